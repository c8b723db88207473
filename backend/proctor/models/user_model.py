from ..db import Base
from sqlalchemy import String
from sqlalchemy import Column, Enum as SQLAlchemyEnum
from fastapi_users.db import SQLAlchemyBaseUserTableUUID
import enum


class UserRole(str, enum.Enum):
    """Staff roles. Candidates never get an account; they are identified by roll number."""
    ADMIN = "admin"
    PROCTOR = "proctor"


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "staff_users"
    full_name = Column(String(255))
    # proctors can watch the console; only admins pass require_admin()
    role = Column(SQLAlchemyEnum(UserRole, name="staff_role"), default=UserRole.PROCTOR, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
