import asyncio
import json
import logging
import random
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError

from ..config import ExamSettings
from ..exceptions import (
    AlreadySubmitted,
    ConcurrentModification,
    InvalidAnswer,
    NotActive,
    NotAuthorized,
    NotEligible,
    NotYetExpired,
)
from ..models.exam_session_model import ExamSession, ExamSessionState, FinalizeReason
from .grading_service import GradeResult, grade
from .question_service import QuestionBank, candidate_view
from .session_store import SessionStore
from .timer_service import remaining_seconds, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminClaim:
    """Capability passed explicitly into every admin operation."""

    subject: str
    is_admin: bool = False


@dataclass(frozen=True)
class CandidateIdentity:
    name: str
    email: str
    roll_no: str

    def normalized(self) -> "CandidateIdentity":
        return CandidateIdentity(
            name=self.name.strip(),
            email=self.email.strip().lower(),
            roll_no=self.roll_no.strip(),
        )


@dataclass(frozen=True)
class StartResult:
    session_id: Any
    candidate_name: str
    questions: List[Dict[str, Any]]
    started_at: datetime
    time_limit: int
    remaining_seconds: int
    answers: Dict[str, Any] = field(default_factory=dict)
    resumed: bool = False


@dataclass(frozen=True)
class FinalizeResult:
    session_id: Any
    state: ExamSessionState
    reason: Optional[FinalizeReason]
    score: Optional[int]
    total: int
    submitted_at: Optional[datetime]
    already_finalized: bool = False


class SessionLocks:
    """Per-session asyncio locks, dropped once nobody holds them."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __call__(self, key) -> asyncio.Lock:
        # "ABC..." and UUID("abc...") must share one lock
        try:
            key = str(uuid.UUID(str(key)))
        except ValueError:
            key = str(key)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


def _coerce_value(question: Mapping[str, Any], value: Any) -> Any:
    """Answer values are typed by the question: choice -> int index, text -> str."""
    if value is None:
        return None
    if question.get("type") == "choice":
        if isinstance(value, bool):
            raise InvalidAnswer("Choice answers must be an option index")
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        if not isinstance(value, int):
            raise InvalidAnswer("Choice answers must be an option index")
        if not 0 <= value < len(question.get("choices") or []):
            raise InvalidAnswer(f"Option index {value} is out of range")
        return value
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    raise InvalidAnswer("Free-text answers must be a string")


def coerce_answers(snapshot: List[Mapping[str, Any]], answers: Mapping[Any, Any], strict: bool = True) -> Dict[str, Any]:
    by_id = {str(q["question_id"]): q for q in snapshot}
    out: Dict[str, Any] = {}
    for qid, value in (answers or {}).items():
        qid = str(qid)
        try:
            question = by_id.get(qid)
            if question is None:
                raise InvalidAnswer(f"Question {qid} is not part of this exam")
            out[qid] = _coerce_value(question, value)
        except InvalidAnswer as e:
            if strict:
                raise
            logger.warning("Dropping answer for question %s: %s", qid, e.detail)
    return out


class ExamSessionService:
    """
    Session lifecycle: active -> submitted | auto_submitted.

    Every exit from active goes through finalize_changes(), written with a single
    version-guarded update. Finalize on an already-closed session returns what was stored.
    Every writer of a session holds lock_for(session_id), so within one process a finalize
    is never raced by an autosave, an extension or a warning.
    """

    def __init__(
        self,
        store: SessionStore,
        bank: QuestionBank,
        settings: ExamSettings,
        grader: Callable[[List[Mapping[str, Any]], Mapping[str, Any]], GradeResult] = grade,
        clock: Callable[[], datetime] = utcnow,
        config_store=None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.bank = bank
        self.settings = settings
        self.config_store = config_store
        self._grader = grader
        self._clock = clock
        self._rng = rng
        self._locks = SessionLocks()

    def now(self) -> datetime:
        return self._clock()

    def lock_for(self, session_id) -> asyncio.Lock:
        return self._locks(session_id)

    @staticmethod
    def require_admin(claim: Optional[AdminClaim]) -> None:
        if claim is None or not claim.is_admin:
            raise NotAuthorized()

    # ----- start -----

    async def start(self, identity: CandidateIdentity) -> StartResult:
        identity = identity.normalized()
        now = self.now()

        # a known roll_no is answered from its session; window and allowlist only gate new sessions
        existing = await self.store.find_by_roll_no(identity.roll_no)
        if existing is not None:
            return self._resume(existing)

        if self.config_store is not None:
            await self.config_store.ensure_window_open(now)
            if self.settings.require_allowlist and not await self.config_store.is_allowed(identity.email, identity.roll_no):
                raise NotEligible()

        snapshot = await self.bank.draw_snapshot(self.settings.question_count, self.settings.question_mix, self._rng)
        if not snapshot:
            logger.warning("Starting exam for roll_no=%s with an empty question bank", identity.roll_no)

        new_session = ExamSession(
            name=identity.name,
            email=identity.email,
            roll_no=identity.roll_no,
            snapshot=snapshot,
            answers={},
            state=ExamSessionState.ACTIVE,
            started_at=now,
            base_time_budget=self.settings.time_limit_minutes,
            granted_extension_minutes=0,
            violation_count=0,
            violation_log=[],
            admin_messages=[],
            total_questions=len(snapshot),
            version=1,
        )
        try:
            created = await self.store.create(new_session)
        except IntegrityError:
            # lost a concurrent start for the same roll_no; use the winner's row
            logger.warning("Concurrent start for roll_no=%s, resuming existing session", identity.roll_no)
            existing = await self.store.find_by_roll_no(identity.roll_no)
            if existing is None:
                raise
            return self._resume(existing)

        logger.info("Exam session %s started for roll_no=%s with %d questions", created.id, created.roll_no, len(snapshot))
        return self._start_result(created, resumed=False)

    def _resume(self, existing: ExamSession) -> StartResult:
        if not existing.is_active:
            raise AlreadySubmitted()
        logger.info("Resuming exam session %s for roll_no=%s", existing.id, existing.roll_no)
        return self._start_result(existing, resumed=True)

    def _start_result(self, exam_session: ExamSession, resumed: bool) -> StartResult:
        return StartResult(
            session_id=exam_session.id,
            candidate_name=exam_session.name,
            questions=candidate_view(exam_session.snapshot or []),
            started_at=exam_session.started_at,
            time_limit=exam_session.base_time_budget + exam_session.granted_extension_minutes,
            remaining_seconds=remaining_seconds(exam_session, self.now()),
            answers=dict(exam_session.answers or {}),
            resumed=resumed,
        )

    # ----- answers -----

    async def record_answer(self, session_id, question_id, value) -> Dict[str, Any]:
        return await self.sync_answers(session_id, {str(question_id): value})

    async def sync_answers(self, session_id, answers: Mapping[Any, Any]) -> Dict[str, Any]:
        def build(current: ExamSession):
            if not current.is_active:
                raise NotActive()
            merged = dict(current.answers or {})
            merged.update(coerce_answers(current.snapshot or [], answers))
            return {"answers": merged}

        async with self.lock_for(session_id):
            updated = await self.store.mutate(session_id, build, self.settings.cas_max_retries)
        return dict(updated.answers)

    # ----- finalize -----

    def finalize_changes(
        self,
        current: ExamSession,
        extra_answers: Mapping[str, Any],
        reason: FinalizeReason,
        now: datetime,
        graded: Optional[Dict[str, GradeResult]] = None,
    ) -> Dict[str, Any]:
        """
        Column values for leaving active. Grades the merged answer set against the frozen snapshot.

        Callers retrying a lost write pass the same `graded` dict across attempts; an attempt
        whose snapshot and merged answers are unchanged reuses the earlier result.
        """
        merged = dict(current.answers or {})
        merged.update(extra_answers)
        result = self._grade_once(current.snapshot or [], merged, graded)
        state = ExamSessionState.SUBMITTED if reason == FinalizeReason.MANUAL else ExamSessionState.AUTO_SUBMITTED
        return {
            "answers": merged,
            "state": state,
            "finalize_reason": reason,
            "submitted_at": now,
            "score": result.score,
            "total_questions": result.total,
            "question_scores": dict(result.question_scores),
        }

    def _grade_once(self, snapshot, answers, graded: Optional[Dict[str, GradeResult]]) -> GradeResult:
        if graded is None:
            return self._grader(snapshot, answers)
        key = json.dumps([snapshot, answers], sort_keys=True, default=str)
        if key not in graded:
            graded[key] = self._grader(snapshot, answers)
        return graded[key]

    @staticmethod
    def finalize_result(exam_session: ExamSession, already_finalized: bool) -> FinalizeResult:
        return FinalizeResult(
            session_id=exam_session.id,
            state=exam_session.state,
            reason=exam_session.finalize_reason,
            score=exam_session.score,
            total=exam_session.total_questions,
            submitted_at=exam_session.submitted_at,
            already_finalized=already_finalized,
        )

    async def finalize(
        self,
        session_id,
        answers: Optional[Mapping[Any, Any]] = None,
        reason: FinalizeReason = FinalizeReason.MANUAL,
        claim: Optional[AdminClaim] = None,
    ) -> FinalizeResult:
        reason = FinalizeReason(reason)
        if reason == FinalizeReason.ADMIN_FORCED:
            self.require_admin(claim)

        graded: Dict[str, GradeResult] = {}
        async with self.lock_for(session_id):
            for attempt in range(1, self.settings.cas_max_retries + 1):
                current = await self.store.get(session_id)
                if not current.is_active:
                    return self.finalize_result(current, already_finalized=True)

                now = self.now()
                if reason == FinalizeReason.TIMEOUT:
                    left = remaining_seconds(current, now)
                    if left > 0:
                        raise NotYetExpired(f"Exam time has not expired yet ({left}s remaining)")

                extra = coerce_answers(current.snapshot or [], answers or {}, strict=False)
                changes = self.finalize_changes(current, extra, reason, now, graded)
                if await self.store.compare_and_set(current, changes):
                    for column, value in changes.items():
                        setattr(current, column, value)
                    current.version += 1
                    logger.info(
                        "Exam session %s finalized (%s, %s): %s/%s",
                        current.id, current.state.value, reason.value, current.score, current.total_questions,
                    )
                    return self.finalize_result(current, already_finalized=False)
                logger.warning("Version conflict finalizing exam session %s (attempt %d)", current.id, attempt)

        raise ConcurrentModification()

    async def force_finalize(self, session_id, claim: AdminClaim) -> FinalizeResult:
        return await self.finalize(session_id, None, FinalizeReason.ADMIN_FORCED, claim)

    # ----- admin -----

    async def post_admin_message(self, session_id, message: str, claim: AdminClaim) -> List[Dict[str, Any]]:
        self.require_admin(claim)
        now = self.now()

        def build(current: ExamSession):
            if not current.is_active:
                raise NotActive()
            messages = list(current.admin_messages or [])
            messages.append({"message": message.strip(), "timestamp": now.isoformat()})
            return {"admin_messages": messages}

        async with self.lock_for(session_id):
            updated = await self.store.mutate(session_id, build, self.settings.cas_max_retries)
        logger.info("Admin %s warned exam session %s", claim.subject, updated.id)
        return list(updated.admin_messages)

    async def get_active_sessions(self, claim: AdminClaim) -> List[ExamSession]:
        self.require_admin(claim)
        return await self.store.list_active()

    async def get_session_status(self, session_id) -> Dict[str, Any]:
        exam_session = await self.store.get(session_id)
        finalized = not exam_session.is_active
        return {
            "session_id": exam_session.id,
            "state": exam_session.state,
            "reason": exam_session.finalize_reason,
            "remaining_seconds": 0 if finalized else remaining_seconds(exam_session, self.now()),
            "granted_extension_minutes": exam_session.granted_extension_minutes,
            "violation_count": exam_session.violation_count,
            "admin_messages": list(exam_session.admin_messages or []),
            "score": exam_session.score if finalized else None,
            "total": exam_session.total_questions,
        }
