import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from forumfiles.core.database import get_db
from forumfiles.core.rate_limit import auth_limit
from forumfiles.core.security import create_access_token, get_current_user
from forumfiles.models.user import User
from forumfiles.schemas.user import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    SendCodeRequest,
    SendCodeResponse,
    UserOut,
    VerifyCodeRequest,
)
from forumfiles.services.credentials import CredentialStore

logger = logging.getLogger("forumfiles")

router = APIRouter(prefix="/auth", tags=["Auth"])


def _auth_response(user: User, message: str = None) -> AuthResponse:
    return AuthResponse(
        message=message,
        token=create_access_token(user),
        user=UserOut.model_validate(user),
    )


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_limit)],
)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    user = await CredentialStore(db).register(body.email, body.password)
    return _auth_response(user, "User registered successfully")


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(auth_limit)])
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await CredentialStore(db).authenticate(body.email, body.password)
    logger.info("User logged in id=%s", user.id)
    return _auth_response(user, "Login successful")


@router.post(
    "/send-verification-code",
    response_model=SendCodeResponse,
    dependencies=[Depends(auth_limit)],
)
async def send_verification_code(body: SendCodeRequest, db: AsyncSession = Depends(get_db)):
    expires_in = await CredentialStore(db).issue_login_code(body.email)
    # same answer for known and unknown addresses
    return SendCodeResponse(
        message="If the email is registered, a verification code has been sent",
        expires_in=expires_in,
    )


@router.post("/verify-code-login", response_model=AuthResponse, dependencies=[Depends(auth_limit)])
async def verify_code_login(body: VerifyCodeRequest, db: AsyncSession = Depends(get_db)):
    user = await CredentialStore(db).verify_login_code(body.email, body.code)
    logger.info("User logged in with verification code id=%s", user.id)
    return _auth_response(user, "Login successful")


@router.get("/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)):
    return MeResponse(user=UserOut.model_validate(current_user))
