from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field

from forumfiles.schemas.base import CamelModel


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class SendCodeRequest(CamelModel):
    email: EmailStr


class VerifyCodeRequest(CamelModel):
    email: EmailStr
    code: str = Field(min_length=1, max_length=16)


class UserOut(CamelModel):
    id: str
    email: str
    role: str
    is_active: bool
    created_at: Optional[datetime] = None


class AuthResponse(CamelModel):
    message: Optional[str] = None
    token: str
    user: UserOut


class SendCodeResponse(CamelModel):
    message: str
    expires_in: int


class MeResponse(CamelModel):
    user: UserOut
