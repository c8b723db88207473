from ..db import Base, JSONType
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, DateTime, Enum, Uuid


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ExamQuestion(Base):
    __tablename__ = "exam_questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    prompt = Column(String, nullable=False)

    type = Column(Enum('choice', 'text', name='exam_question_type'), nullable=False)
    # None for free-text questions
    choices = Column(JSONType, nullable=True)
    # zero-based index for choice questions, literal string for text questions
    answer_key = Column(JSONType, nullable=False)
    difficulty = Column(Enum('easy', 'medium', 'hard', name='exam_question_difficulty'),
                        nullable=False, default='medium')
    category = Column(String, nullable=False, default='aptitude')
    is_active = Column(Boolean, nullable=False, default=True)
    source = Column(Enum('manual', 'generated', 'spreadsheet', name='exam_question_source'),
                    nullable=False, default='manual')
    created_at = Column(DateTime, nullable=False, default=_utcnow)
