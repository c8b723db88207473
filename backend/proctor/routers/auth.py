#  staff login for the proctor console; candidates never authenticate here
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi_users.password import PasswordHelper

from ..db import get_user_db
from ..dependencies import admin_claim
from ..schemas.user_schema import ClaimRead, LoginRequest, LoginResponse, UserRead
from ..security import get_jwt_strategy
from ..services.lifecycle_service import AdminClaim

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/auth', tags=['auth'])

password_helper = PasswordHelper()


@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, user_db=Depends(get_user_db)):
    user = await user_db.get_by_email(payload.email.lower())
    if user is None or not user.is_active:
        # same answer for unknown and disabled accounts
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid credentials")

    valid, upgraded_hash = password_helper.verify_and_update(payload.password, user.hashed_password)
    if not valid:
        logger.warning("Failed staff login for %s", payload.email)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid credentials")
    if upgraded_hash:
        user = await user_db.update(user, {"hashed_password": upgraded_hash})

    token = await get_jwt_strategy().write_token(user)
    claim = AdminClaim(subject=user.email, is_admin=user.is_admin)
    logger.info("Staff login for %s (admin=%s)", user.email, claim.is_admin)

    return {
        "user": UserRead.model_validate(user, from_attributes=True),
        "claim": asdict(claim),
        "token": token,
    }


@router.get("/claim", response_model=ClaimRead)
async def get_claim(claim: AdminClaim = Depends(admin_claim)):
    # lets the console decide which admin controls to show
    return asdict(claim)
