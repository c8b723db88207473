import logging
from dataclasses import dataclass

from ..exceptions import InvalidAnswer, NotActive
from ..models.exam_session_model import ExamSession, FinalizeReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViolationResult:
    violation_count: int
    auto_submitted: bool


class ViolationMonitor:
    """
    Records integrity events (tab-switch, fullscreen-exit, copy-paste, ...). Kinds are open
    string tags. Reaching the threshold finalizes in the same write that records the event,
    so a session is never observed active with violation_count >= max.
    """

    def __init__(self, lifecycle):
        self._lifecycle = lifecycle

    async def register_violation(self, session_id, kind: str) -> ViolationResult:
        kind = (kind or "").strip().lower()
        if not kind:
            raise InvalidAnswer("Violation kind is required")

        lifecycle = self._lifecycle
        max_violations = lifecycle.settings.max_violations

        graded = {}
        async with lifecycle.lock_for(session_id):
            now = lifecycle.now()

            def build(current: ExamSession):
                if not current.is_active:
                    raise NotActive()
                count = current.violation_count + 1
                log = list(current.violation_log or [])
                log.append({"kind": kind, "timestamp": now.isoformat()})
                changes = {"violation_count": count, "violation_log": log}
                if count >= max_violations:
                    changes.update(lifecycle.finalize_changes(current, {}, FinalizeReason.VIOLATION_THRESHOLD, now, graded))
                return changes

            updated = await lifecycle.store.mutate(session_id, build, lifecycle.settings.cas_max_retries)

        auto_submitted = not updated.is_active
        if auto_submitted:
            logger.warning(
                "Exam session %s auto-submitted after %d violations (last: %s)",
                updated.id, updated.violation_count, kind,
            )
        else:
            logger.info("Violation %r recorded for exam session %s (%d/%d)", kind, updated.id, updated.violation_count, max_violations)
        return ViolationResult(violation_count=updated.violation_count, auto_submitted=auto_submitted)
