from functools import lru_cache

from fastapi import Depends, HTTPException, status, Request
from .models.user_model import User, UserRole
from .security import current_active_user
from .db import async_session_maker
from .config import load_exam_settings
from .exceptions import ExamError
from .services.exam_config_service import ExamConfigStore
from .services.lifecycle_service import AdminClaim, ExamSessionService
from .services.question_service import QuestionBank
from .services.question_source import QuestionSource, StaticQuestionSource
from .services.reminder_service import LoggingMailer
from .services.session_store import SessionStore
from .services.timer_service import TimerService
from .services.violation_service import ViolationMonitor


def current_user_has_role(required_role: UserRole):
    async def current_user_contains_role(user: User = Depends(current_active_user)):
        if user.role != required_role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted",
            )
        return user
    return current_user_contains_role


current_admin = current_user_has_role(UserRole.ADMIN)


async def admin_claim(user: User = Depends(current_active_user)) -> AdminClaim:
    # the services decide what the claim allows; any signed-in staff member gets one
    return AdminClaim(subject=user.email, is_admin=user.is_admin)


async def users_router_permission(request: Request, user: User = Depends(current_active_user)):
    method = request.method.upper()
    # Admin-only methods
    if method in ("POST", "PUT", "PATCH", "DELETE"):
        if user.role != UserRole.ADMIN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operation not permitted")
    return True


def to_http(e: ExamError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.detail)


# Service graph. One instance per process so the per-session locks are shared by all requests.

@lru_cache
def get_config_store() -> ExamConfigStore:
    return ExamConfigStore(async_session_maker)


@lru_cache
def get_exam_service() -> ExamSessionService:
    return ExamSessionService(
        store=SessionStore(async_session_maker),
        bank=QuestionBank(async_session_maker),
        settings=load_exam_settings(),
        config_store=get_config_store(),
    )


def get_question_bank(service: ExamSessionService = Depends(get_exam_service)) -> QuestionBank:
    return service.bank


def get_violation_monitor(service: ExamSessionService = Depends(get_exam_service)) -> ViolationMonitor:
    return ViolationMonitor(service)


def get_timer_service(service: ExamSessionService = Depends(get_exam_service)) -> TimerService:
    return TimerService(service, clock=service.now)


@lru_cache
def get_question_source() -> QuestionSource:
    # no generator service configured: serves nothing until one is wired in
    return StaticQuestionSource()


@lru_cache
def get_mailer() -> LoggingMailer:
    return LoggingMailer()
