from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from dataclasses import asdict
from typing import List
from sqlalchemy.exc import IntegrityError
import logging

from ..dependencies import (
    admin_claim,
    get_exam_service,
    get_timer_service,
    get_violation_monitor,
    get_config_store,
    get_mailer,
    to_http,
)
from ..exceptions import ExamError
from ..schemas.exam_session_schema import (
    ActiveSessionRead,
    ExtendPayload,
    ExtendResponse,
    ExtendAllResponse,
    FinalizeResponse,
    WarningPayload,
    AdminMessage,
    ViolationPayload,
    ViolationResponse,
    RankedResult,
    ExamWindow,
    AllowlistCreate,
    AllowlistRead,
)
from ..services.exam_config_service import ExamConfigStore
from ..services.lifecycle_service import AdminClaim, ExamSessionService
from ..services.reminder_service import send_exam_reminder_if_due
from ..services.results_service import list_finalized_ranked, results_to_csv
from ..services.timer_service import TimerService, remaining_seconds
from ..services.violation_service import ViolationMonitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/exam", tags=["Exam Admin"])


@router.get("/active", response_model=List[ActiveSessionRead])
async def get_active_sessions(claim: AdminClaim = Depends(admin_claim), service: ExamSessionService = Depends(get_exam_service)):
    # live monitoring
    try:
        sessions = await service.get_active_sessions(claim)
    except ExamError as e:
        raise to_http(e)

    now = service.now()
    out = []
    for s in sessions:
        out.append({
            'id': s.id,
            'name': s.name,
            'email': s.email,
            'roll_no': s.roll_no,
            'started_at': s.started_at,
            'remaining_seconds': remaining_seconds(s, now),
            'granted_extension_minutes': s.granted_extension_minutes,
            'violation_count': s.violation_count,
            'violation_log': s.violation_log or [],
            'admin_messages': s.admin_messages or [],
            'answered': sum(1 for v in (s.answers or {}).values() if v is not None),
        })
    return out


@router.post("/sessions/{session_id}/extend", response_model=ExtendResponse)
async def extend_session(session_id: str, payload: ExtendPayload, claim: AdminClaim = Depends(admin_claim), timer: TimerService = Depends(get_timer_service)):
    try:
        updated = await timer.grant_extension(session_id, payload.minutes, claim)
        left = await timer.remaining(updated.id)
    except ExamError as e:
        raise to_http(e)
    return {
        'session_id': updated.id,
        'granted_extension_minutes': updated.granted_extension_minutes,
        'remaining_seconds': left,
    }


@router.post("/extend-all", response_model=ExtendAllResponse)
async def extend_all_sessions(payload: ExtendPayload, claim: AdminClaim = Depends(admin_claim), timer: TimerService = Depends(get_timer_service)):
    try:
        extended = await timer.grant_extension_all(payload.minutes, claim)
    except ExamError as e:
        raise to_http(e)
    return {'extended': extended, 'minutes': payload.minutes}


@router.post("/sessions/{session_id}/force-submit", response_model=FinalizeResponse)
async def force_submit(session_id: str, claim: AdminClaim = Depends(admin_claim), service: ExamSessionService = Depends(get_exam_service)):
    try:
        result = await service.force_finalize(session_id, claim)
    except ExamError as e:
        raise to_http(e)
    except Exception as e:
        logger.exception("Error while force-submitting exam session %s: %s", session_id, e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error while submitting exam")
    return asdict(result)


@router.post("/sessions/{session_id}/warnings", response_model=List[AdminMessage])
async def send_warning(session_id: str, payload: WarningPayload, claim: AdminClaim = Depends(admin_claim), service: ExamSessionService = Depends(get_exam_service)):
    try:
        return await service.post_admin_message(session_id, payload.message, claim)
    except ExamError as e:
        raise to_http(e)


@router.post("/sessions/{session_id}/violations", response_model=ViolationResponse)
async def record_violation(session_id: str, payload: ViolationPayload, claim: AdminClaim = Depends(admin_claim), monitor: ViolationMonitor = Depends(get_violation_monitor)):
    # proctor-observed violation, same threshold policy as client-reported ones
    try:
        ExamSessionService.require_admin(claim)
        result = await monitor.register_violation(session_id, payload.kind)
    except ExamError as e:
        raise to_http(e)
    return asdict(result)


@router.get("/results", response_model=List[RankedResult])
async def get_results(claim: AdminClaim = Depends(admin_claim), service: ExamSessionService = Depends(get_exam_service)):
    try:
        return await list_finalized_ranked(service, claim)
    except ExamError as e:
        raise to_http(e)


@router.get("/results/export")
async def export_results(claim: AdminClaim = Depends(admin_claim), service: ExamSessionService = Depends(get_exam_service)):
    try:
        rows = await list_finalized_ranked(service, claim)
    except ExamError as e:
        raise to_http(e)
    return Response(
        content=results_to_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=exam_results.csv"},
    )


@router.post("/config", response_model=ExamWindow)
async def set_exam_window(payload: ExamWindow, claim: AdminClaim = Depends(admin_claim), config_store: ExamConfigStore = Depends(get_config_store)):
    try:
        ExamSessionService.require_admin(claim)
    except ExamError as e:
        raise to_http(e)
    await config_store.set_window(payload.start_time, payload.end_time)
    return await config_store.get_window()


@router.post("/allowlist", response_model=AllowlistRead, status_code=status.HTTP_201_CREATED)
async def add_to_allowlist(payload: AllowlistCreate, claim: AdminClaim = Depends(admin_claim), config_store: ExamConfigStore = Depends(get_config_store)):
    try:
        ExamSessionService.require_admin(claim)
    except ExamError as e:
        raise to_http(e)
    try:
        return await config_store.add_to_allowlist(payload.email, payload.name, payload.roll_no, payload.can_take_exam)
    except IntegrityError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email is already on the allowlist")


@router.get("/allowlist", response_model=List[AllowlistRead])
async def get_allowlist(claim: AdminClaim = Depends(admin_claim), config_store: ExamConfigStore = Depends(get_config_store)):
    try:
        ExamSessionService.require_admin(claim)
    except ExamError as e:
        raise to_http(e)
    return await config_store.list_allowlist()


@router.post("/reminders/sweep")
async def sweep_reminders(
    claim: AdminClaim = Depends(admin_claim),
    service: ExamSessionService = Depends(get_exam_service),
    config_store: ExamConfigStore = Depends(get_config_store),
    mailer=Depends(get_mailer),
):
    """Entry point for the external scheduler. Sends the one-hour reminder at most once per window."""
    try:
        ExamSessionService.require_admin(claim)
    except ExamError as e:
        raise to_http(e)
    sent = await send_exam_reminder_if_due(config_store, mailer, service.now())
    return {'sent': sent}
