from fastapi import APIRouter, Depends, HTTPException, status
import logging
from dataclasses import asdict

from ..dependencies import get_exam_service, get_violation_monitor, get_config_store, to_http
from ..exceptions import ExamError
from ..models.exam_session_model import FinalizeReason
from ..schemas.exam_session_schema import (
    StartRequest,
    StartResponse,
    AnswerSync,
    SingleAnswer,
    AnswersResponse,
    ViolationPayload,
    ViolationResponse,
    SubmitPayload,
    FinalizeResponse,
    SessionStatus,
    ExamWindow,
)
from ..services.exam_config_service import ExamConfigStore
from ..services.lifecycle_service import CandidateIdentity, ExamSessionService
from ..services.violation_service import ViolationMonitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exam", tags=["Exam"])


@router.get("/config", response_model=ExamWindow)
async def get_exam_window(config_store: ExamConfigStore = Depends(get_config_store)):
    return await config_store.get_window()


@router.post("/start", response_model=StartResponse)
async def start_exam(payload: StartRequest, service: ExamSessionService = Depends(get_exam_service)):
    # creates a session, or resumes the candidate's in-progress one
    try:
        result = await service.start(CandidateIdentity(name=payload.name, email=payload.email, roll_no=payload.roll_no))
    except ExamError as e:
        raise to_http(e)
    return asdict(result)


@router.put("/sessions/{session_id}/answers", response_model=AnswersResponse)
async def sync_answers(session_id: str, payload: AnswerSync, service: ExamSessionService = Depends(get_exam_service)):
    """Periodic autosave of the whole answer sheet. A closed session answers 409 and the client discards."""
    try:
        answers = await service.sync_answers(session_id, payload.answers)
    except ExamError as e:
        raise to_http(e)
    except Exception as e:
        logger.exception("Error while syncing answers for exam session %s: %s", session_id, e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error while saving answers")
    return {"answers": answers}


@router.put("/sessions/{session_id}/answers/{question_id}", response_model=AnswersResponse)
async def record_answer(session_id: str, question_id: str, payload: SingleAnswer, service: ExamSessionService = Depends(get_exam_service)):
    try:
        answers = await service.record_answer(session_id, question_id, payload.value)
    except ExamError as e:
        raise to_http(e)
    return {"answers": answers}


@router.post("/sessions/{session_id}/violations", response_model=ViolationResponse)
async def report_violation(session_id: str, payload: ViolationPayload, monitor: ViolationMonitor = Depends(get_violation_monitor)):
    try:
        result = await monitor.register_violation(session_id, payload.kind)
    except ExamError as e:
        raise to_http(e)
    return asdict(result)


@router.post("/sessions/{session_id}/submit", response_model=FinalizeResponse)
async def submit_exam(session_id: str, payload: SubmitPayload, service: ExamSessionService = Depends(get_exam_service)):
    try:
        result = await service.finalize(session_id, payload.answers, FinalizeReason(payload.reason))
    except ExamError as e:
        raise to_http(e)
    except Exception as e:
        logger.exception("Error while submitting exam session %s: %s", session_id, e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error while submitting exam")
    return asdict(result)


@router.get("/sessions/{session_id}/status", response_model=SessionStatus)
async def get_status(session_id: str, service: ExamSessionService = Depends(get_exam_service)):
    # polled by the candidate UI for warnings, extensions and closure
    try:
        return await service.get_session_status(session_id)
    except ExamError as e:
        raise to_http(e)
