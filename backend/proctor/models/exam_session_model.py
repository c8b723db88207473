from ..db import Base, JSONType
from sqlalchemy import Column, Integer, String, DateTime, Enum as SAEnum, UniqueConstraint, Uuid
import uuid
import enum


class ExamSessionState(str, enum.Enum):
    ACTIVE = "active"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"


class FinalizeReason(str, enum.Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"
    VIOLATION_THRESHOLD = "violation_threshold"
    ADMIN_FORCED = "admin_forced"


class ExamSession(Base):
    """One candidate's attempt. Rows are never deleted; finalized rows back the ranking and export."""

    __tablename__ = "exam_sessions"
    __table_args__ = (UniqueConstraint('roll_no', name='uq_exam_session_roll_no'),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    roll_no = Column(String, nullable=False)

    # ordered [{question_id, prompt, choices, type, answer_key}]; answer_key never leaves the server
    snapshot = Column(JSONType, nullable=False, default=list)
    answers = Column(JSONType, nullable=False, default=dict)

    state = Column(SAEnum(ExamSessionState), default=ExamSessionState.ACTIVE, nullable=False)
    finalize_reason = Column(SAEnum(FinalizeReason), nullable=True)

    started_at = Column(DateTime, nullable=False)
    submitted_at = Column(DateTime, nullable=True)

    base_time_budget = Column(Integer, nullable=False)  # minutes
    granted_extension_minutes = Column(Integer, nullable=False, default=0)

    violation_count = Column(Integer, nullable=False, default=0)
    violation_log = Column(JSONType, nullable=False, default=list)
    admin_messages = Column(JSONType, nullable=False, default=list)

    score = Column(Integer, nullable=True)
    total_questions = Column(Integer, nullable=False, default=0)
    question_scores = Column(JSONType, nullable=True)

    # bumped by every successful update; all writes are guarded on it
    version = Column(Integer, nullable=False, default=1)

    @property
    def is_active(self) -> bool:
        return self.state == ExamSessionState.ACTIVE
