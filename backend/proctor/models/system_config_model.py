from ..db import Base, JSONType
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, DateTime, Uuid


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SystemConfig(Base):
    """Key/value settings. Also holds one-shot flags, which rely on the unique key."""

    __tablename__ = "system_config"

    key = Column(String, primary_key=True)
    value = Column(JSONType, nullable=False)
    last_updated = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class ExamAllowlist(Base):
    __tablename__ = "exam_allowlist"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    roll_no = Column(String, nullable=False)
    can_take_exam = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
