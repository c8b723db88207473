import uuid

from fastapi_users import schemas
from pydantic import BaseModel, EmailStr

from ..models.user_model import UserRole


class UserRead(schemas.BaseUser[uuid.UUID]):
    full_name: str | None = None
    role: UserRole


class UserCreate(schemas.BaseUserCreate):
    full_name: str
    # no role here: self-registered staff start as proctors, an admin promotes them via /users


class UserUpdate(schemas.BaseUserUpdate):
    full_name: str | None = None
    role: UserRole | None = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ClaimRead(BaseModel):
    subject: str
    is_admin: bool


class LoginResponse(BaseModel):
    user: UserRead
    claim: ClaimRead
    token: str
