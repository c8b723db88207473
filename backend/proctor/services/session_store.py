import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..exceptions import SessionNotFound, ConcurrentModification
from ..models.exam_session_model import ExamSession, ExamSessionState

logger = logging.getLogger(__name__)


def _as_uuid(session_id) -> uuid.UUID:
    if isinstance(session_id, uuid.UUID):
        return session_id
    try:
        return uuid.UUID(str(session_id))
    except (TypeError, ValueError):
        raise SessionNotFound()


class SessionStore:
    """
    Durable record of exam sessions.

    Every write is a single UPDATE guarded on the row's version (and, unless told otherwise,
    on state == active). A zero rowcount means another writer got there first; callers
    re-read and decide again. Each call runs in its own short transaction.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def get(self, session_id) -> ExamSession:
        async with self._session_maker() as session:
            found = await session.get(ExamSession, _as_uuid(session_id))
        if found is None:
            raise SessionNotFound()
        return found

    async def find_by_roll_no(self, roll_no: str) -> Optional[ExamSession]:
        async with self._session_maker() as session:
            res = await session.execute(select(ExamSession).where(ExamSession.roll_no == roll_no))
            return res.scalar_one_or_none()

    async def create(self, exam_session: ExamSession) -> ExamSession:
        """Insert a new session. IntegrityError propagates when the roll_no is already taken."""
        async with self._session_maker() as session:
            session.add(exam_session)
            await session.commit()
            await session.refresh(exam_session)
            return exam_session

    async def compare_and_set(self, current: ExamSession, changes: Dict[str, Any], require_active: bool = True) -> bool:
        stmt = update(ExamSession).where(
            ExamSession.id == current.id,
            ExamSession.version == current.version,
        )
        if require_active:
            stmt = stmt.where(ExamSession.state == ExamSessionState.ACTIVE)
        stmt = stmt.values(version=ExamSession.version + 1, **changes).execution_options(synchronize_session=False)

        async with self._session_maker() as session:
            res = await session.execute(stmt)
            await session.commit()
        return res.rowcount == 1

    async def mutate(
        self,
        session_id,
        build_changes: Callable[[ExamSession], Dict[str, Any]],
        max_retries: int = 8,
    ) -> ExamSession:
        """
        Read-decide-write loop. build_changes sees the latest row and returns the column
        values to write; it may raise to abort (e.g. NotActive). Returns the row as written.
        """
        for attempt in range(1, max_retries + 1):
            current = await self.get(session_id)
            changes = build_changes(current)
            if await self.compare_and_set(current, changes):
                for column, value in changes.items():
                    setattr(current, column, value)
                current.version += 1
                return current
            logger.warning("Version conflict on exam session %s (attempt %d/%d)", current.id, attempt, max_retries)
        raise ConcurrentModification()

    async def list_active(self) -> List[ExamSession]:
        async with self._session_maker() as session:
            res = await session.execute(
                select(ExamSession)
                .where(ExamSession.state == ExamSessionState.ACTIVE)
                .order_by(ExamSession.started_at.desc())
            )
            return list(res.scalars().all())

    async def list_finalized_ranked(self) -> List[ExamSession]:
        async with self._session_maker() as session:
            res = await session.execute(
                select(ExamSession)
                .where(ExamSession.state != ExamSessionState.ACTIVE)
                .order_by(ExamSession.score.desc(), ExamSession.submitted_at.asc())
            )
            return list(res.scalars().all())
