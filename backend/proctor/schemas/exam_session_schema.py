from pydantic import BaseModel, EmailStr, Field, validator
from typing import Optional, Dict, List, Literal, Union
from uuid import UUID
from datetime import datetime

from ..models.exam_session_model import ExamSessionState, FinalizeReason

AnswerValue = Optional[Union[int, str]]


class StartRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    roll_no: str = Field(..., min_length=1)

    @validator("name", "roll_no")
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class CandidateQuestion(BaseModel):
    question_id: str
    prompt: str
    type: Literal["choice", "text"]
    choices: Optional[List[str]] = None


class StartResponse(BaseModel):
    session_id: UUID
    candidate_name: str
    questions: List[CandidateQuestion]
    started_at: datetime
    time_limit: int
    remaining_seconds: int
    answers: Dict[str, AnswerValue] = {}
    resumed: bool = False


class AnswerSync(BaseModel):
    answers: Dict[str, AnswerValue]


class SingleAnswer(BaseModel):
    value: AnswerValue = None


class AnswersResponse(BaseModel):
    answers: Dict[str, AnswerValue]


class ViolationPayload(BaseModel):
    kind: str = Field(..., min_length=1, max_length=64)


class ViolationResponse(BaseModel):
    violation_count: int
    auto_submitted: bool


class SubmitPayload(BaseModel):
    answers: Optional[Dict[str, AnswerValue]] = None
    reason: Literal["manual", "timeout"] = "manual"


class FinalizeResponse(BaseModel):
    session_id: UUID
    state: ExamSessionState
    reason: Optional[FinalizeReason]
    score: Optional[int]
    total: int
    submitted_at: Optional[datetime]
    already_finalized: bool = False


class AdminMessage(BaseModel):
    message: str
    timestamp: datetime


class ViolationEntry(BaseModel):
    kind: str
    timestamp: datetime


class SessionStatus(BaseModel):
    session_id: UUID
    state: ExamSessionState
    reason: Optional[FinalizeReason]
    remaining_seconds: int
    granted_extension_minutes: int
    violation_count: int
    admin_messages: List[AdminMessage] = []
    score: Optional[int] = None
    total: int


class ActiveSessionRead(BaseModel):
    id: UUID
    name: str
    email: str
    roll_no: str
    started_at: datetime
    remaining_seconds: int
    granted_extension_minutes: int
    violation_count: int
    violation_log: List[ViolationEntry] = []
    admin_messages: List[AdminMessage] = []
    answered: int


class ExtendPayload(BaseModel):
    # validated in the timer service so the error taxonomy stays in one place
    minutes: int


class ExtendResponse(BaseModel):
    session_id: UUID
    granted_extension_minutes: int
    remaining_seconds: int


class ExtendAllResponse(BaseModel):
    extended: int
    minutes: int


class WarningPayload(BaseModel):
    message: str = Field(..., min_length=1, max_length=500)

    @validator("message")
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("message must not be blank")
        return v


class RankedResult(BaseModel):
    rank: int
    session_id: UUID
    name: str
    email: str
    roll_no: str
    score: Optional[int]
    total: int
    state: ExamSessionState
    reason: Optional[FinalizeReason]
    violation_count: int
    submitted_at: Optional[datetime]


class ExamWindow(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @validator("end_time")
    def end_after_start(cls, v, values):
        start = values.get("start_time")
        if v is not None and start is not None and v <= start:
            raise ValueError("end_time must be after start_time")
        return v


class AllowlistCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1)
    roll_no: str = Field(..., min_length=1)
    can_take_exam: bool = True


class AllowlistRead(BaseModel):
    id: UUID
    email: str
    name: str
    roll_no: str
    can_take_exam: bool

    class Config:
        from_attributes = True
