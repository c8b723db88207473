import random
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from proctor.config import ExamSettings
from proctor.db import create_db_and_tables
from proctor.services.exam_config_service import ExamConfigStore
from proctor.services.grading_service import grade
from proctor.services.lifecycle_service import AdminClaim, CandidateIdentity, ExamSessionService
from proctor.services.question_service import QuestionBank
from proctor.services.session_store import SessionStore
from proctor.services.timer_service import TimerService
from proctor.services.violation_service import ViolationMonitor


class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class CountingGrader:
    def __init__(self):
        self.calls = 0

    def __call__(self, snapshot, answers):
        self.calls += 1
        return grade(snapshot, answers)


# three choice questions; key of "Question i" is index i % 4
SEED_QUESTIONS = [
    {"prompt": f"Question {i}", "choices": ["w", "x", "y", "z"], "answer_key": i % 4, "difficulty": "medium"}
    for i in range(3)
]


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    # file database so concurrent tasks get separate connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'proctor_test.db'}")
    await create_db_and_tables(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 9, 0, 0))


@pytest.fixture
def grader():
    return CountingGrader()


@pytest.fixture
def settings():
    return ExamSettings(time_limit_minutes=30, question_count=3, max_violations=3)


@pytest.fixture
def admin():
    return AdminClaim(subject="admin@example.com", is_admin=True)


@pytest.fixture
def proctor_claim():
    return AdminClaim(subject="proctor@example.com", is_admin=False)


@pytest_asyncio.fixture
async def bank(session_maker):
    bank = QuestionBank(session_maker)
    saved, skipped = await bank.add_many(SEED_QUESTIONS)
    assert len(saved) == 3 and not skipped
    return bank


@pytest.fixture
def config_store(session_maker):
    return ExamConfigStore(session_maker)


@pytest.fixture
def service(session_maker, bank, settings, grader, clock, config_store):
    return ExamSessionService(
        store=SessionStore(session_maker),
        bank=bank,
        settings=settings,
        grader=grader,
        clock=clock,
        config_store=config_store,
        rng=random.Random(7),
    )


@pytest.fixture
def monitor(service):
    return ViolationMonitor(service)


@pytest.fixture
def timer(service, clock):
    return TimerService(service, clock=clock)


@pytest.fixture
def candidate():
    def make(roll_no="R1", name="Asha Rao", email="asha@example.com"):
        return CandidateIdentity(name=name, email=email, roll_no=roll_no)
    return make


@pytest.fixture
def keys_for(service):
    """Server-side answer keys of a started session, by question id."""
    async def lookup(session_id):
        stored = await service.store.get(session_id)
        return {q["question_id"]: q["answer_key"] for q in stored.snapshot}
    return lookup
