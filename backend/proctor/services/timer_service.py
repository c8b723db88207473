import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from ..exceptions import InvalidExtension, NotActive
from ..models.exam_session_model import ExamSession

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    # naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC (remove tzinfo). If already naive, assume UTC and return as-is.
    Returns None if input is None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def effective_deadline(exam_session: ExamSession) -> datetime:
    """started_at + base budget + granted extension. Always recomputed from the row, never cached."""
    minutes = (exam_session.base_time_budget or 0) + (exam_session.granted_extension_minutes or 0)
    return exam_session.started_at + timedelta(minutes=minutes)


def remaining_seconds(exam_session: ExamSession, now: datetime) -> int:
    left = (effective_deadline(exam_session) - now).total_seconds()
    return max(0, int(left))


class TimerService:
    """
    Deadline bookkeeping. There is no per-session timer task: the candidate's client counts
    down and calls finalize(reason=timeout), which re-checks the deadline server side.
    """

    def __init__(self, lifecycle, clock: Callable[[], datetime] = utcnow):
        self._lifecycle = lifecycle
        self._clock = clock

    async def remaining(self, session_id) -> int:
        exam_session = await self._lifecycle.store.get(session_id)
        return remaining_seconds(exam_session, self._clock())

    async def grant_extension(self, session_id, minutes: int, claim) -> ExamSession:
        self._lifecycle.require_admin(claim)
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise InvalidExtension()

        def build(current: ExamSession):
            if not current.is_active:
                raise NotActive()
            return {"granted_extension_minutes": current.granted_extension_minutes + minutes}

        async with self._lifecycle.lock_for(session_id):
            updated = await self._lifecycle.store.mutate(session_id, build, self._lifecycle.settings.cas_max_retries)
        logger.info(
            "Granted %d minutes to exam session %s (total extension %d) by %s",
            minutes, updated.id, updated.granted_extension_minutes, claim.subject,
        )
        return updated

    async def grant_extension_all(self, minutes: int, claim) -> int:
        """Extend every active session. Independent per-session updates; sessions closing meanwhile are skipped."""
        self._lifecycle.require_admin(claim)
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise InvalidExtension()

        extended = 0
        for exam_session in await self._lifecycle.store.list_active():
            try:
                await self.grant_extension(exam_session.id, minutes, claim)
            except NotActive:
                continue
            extended += 1
        logger.info("Granted %d minutes to %d active exam sessions", minutes, extended)
        return extended
