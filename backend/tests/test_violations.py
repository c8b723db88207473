import asyncio

import pytest

from proctor.exceptions import InvalidAnswer, NotActive
from proctor.models.exam_session_model import ExamSessionState, FinalizeReason


@pytest.mark.asyncio
async def test_violations_below_threshold_keep_session_active(service, monitor, candidate):
    started = await service.start(candidate())

    first = await monitor.register_violation(started.session_id, "tab-switch")
    second = await monitor.register_violation(started.session_id, "Fullscreen-Exit ")
    assert (first.violation_count, first.auto_submitted) == (1, False)
    assert (second.violation_count, second.auto_submitted) == (2, False)

    stored = await service.store.get(started.session_id)
    assert stored.state == ExamSessionState.ACTIVE
    assert [v["kind"] for v in stored.violation_log] == ["tab-switch", "fullscreen-exit"]


@pytest.mark.asyncio
async def test_threshold_scenario_grades_answered_questions_only(service, monitor, candidate, grader, keys_for):
    started = await service.start(candidate())
    keys = await keys_for(started.session_id)
    qids = [q["question_id"] for q in started.questions]

    await service.record_answer(started.session_id, qids[0], keys[qids[0]])
    await service.record_answer(started.session_id, qids[1], keys[qids[1]])

    await monitor.register_violation(started.session_id, "tab-switch")
    await monitor.register_violation(started.session_id, "tab-switch")
    third = await monitor.register_violation(started.session_id, "copy-paste")
    assert (third.violation_count, third.auto_submitted) == (3, True)

    stored = await service.store.get(started.session_id)
    assert stored.state == ExamSessionState.AUTO_SUBMITTED
    assert stored.finalize_reason == FinalizeReason.VIOLATION_THRESHOLD
    assert (stored.score, stored.total_questions) == (2, 3)
    assert stored.question_scores[qids[2]] == 0
    assert stored.submitted_at is not None
    assert grader.calls == 1


@pytest.mark.asyncio
async def test_violation_after_finalize_is_rejected(service, monitor, candidate):
    started = await service.start(candidate())
    await service.finalize(started.session_id)

    with pytest.raises(NotActive):
        await monitor.register_violation(started.session_id, "tab-switch")
    stored = await service.store.get(started.session_id)
    assert stored.violation_count == 0


@pytest.mark.asyncio
async def test_blank_kind_is_rejected(service, monitor, candidate):
    started = await service.start(candidate())
    with pytest.raises(InvalidAnswer):
        await monitor.register_violation(started.session_id, "   ")


@pytest.mark.asyncio
async def test_concurrent_violations_finalize_exactly_once(service, monitor, candidate, grader):
    started = await service.start(candidate())

    results = await asyncio.gather(
        *(monitor.register_violation(started.session_id, "tab-switch") for _ in range(5)),
        return_exceptions=True,
    )
    recorded = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]

    assert sorted(r.violation_count for r in recorded) == [1, 2, 3]
    assert [r.auto_submitted for r in sorted(recorded, key=lambda r: r.violation_count)] == [False, False, True]
    assert len(rejected) == 2 and all(isinstance(e, NotActive) for e in rejected)
    assert grader.calls == 1

    stored = await service.store.get(started.session_id)
    assert stored.violation_count == 3
    assert stored.state == ExamSessionState.AUTO_SUBMITTED


@pytest.mark.asyncio
async def test_manual_submit_after_violation_finalize_returns_persisted(service, monitor, candidate):
    started = await service.start(candidate())
    for _ in range(3):
        await monitor.register_violation(started.session_id, "fullscreen-exit")

    result = await service.finalize(started.session_id, {started.questions[0]["question_id"]: 0})
    assert result.already_finalized is True
    assert result.reason == FinalizeReason.VIOLATION_THRESHOLD


@pytest.mark.asyncio
async def test_threshold_retry_after_lost_write_grades_once(service, monitor, candidate, grader):
    started = await service.start(candidate())
    await monitor.register_violation(started.session_id, "tab-switch")
    await monitor.register_violation(started.session_id, "tab-switch")

    store = service.store
    original = store.compare_and_set
    interfered = []

    async def racing_cas(current, changes, require_active=True):
        # an extension from another worker lands right before the closing write
        if "state" in changes and not interfered:
            interfered.append(True)
            other = await store.get(current.id)
            await original(other, {"granted_extension_minutes": other.granted_extension_minutes + 1})
        return await original(current, changes, require_active)

    store.compare_and_set = racing_cas
    third = await monitor.register_violation(started.session_id, "copy-paste")

    assert interfered == [True]
    assert (third.violation_count, third.auto_submitted) == (3, True)
    assert grader.calls == 1
    stored = await store.get(started.session_id)
    assert stored.granted_extension_minutes == 1
    assert stored.finalize_reason == FinalizeReason.VIOLATION_THRESHOLD
