from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from forumfiles.core.config import settings
from forumfiles.core.database import get_db
from forumfiles.core.errors import AccountDeactivated, Forbidden, Unauthenticated, ValidationError
from forumfiles.models.file import File
from forumfiles.models.user import User

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "type": "access",
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise Unauthenticated()
    if payload.get("type") != "access" or not payload.get("sub"):
        raise Unauthenticated()
    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the caller from the bearer token on every request.

    The user row is re-read so that deactivation, deletion and role
    changes take effect immediately, whatever the token still claims.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthenticated("No token provided")

    payload = decode_access_token(credentials.credentials)

    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalars().first()
    if user is None or user.is_deleted:
        raise Unauthenticated()
    if not user.is_active:
        raise AccountDeactivated()
    return user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise Forbidden("Admin access required")
    return current_user


def ensure_owner(file: File, user: User) -> None:
    if str(file.owner_id) != str(user.id):
        raise Forbidden()


def ensure_not_self(actor: User, target_id: str, action: str) -> None:
    if str(actor.id) == str(target_id):
        raise ValidationError(f"Cannot {action} your own account", kind="self_lockout")
