"""Credential store: users, password hashes, roles, one-time login codes."""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from forumfiles.core.config import settings
from forumfiles.core.errors import (
    AccountDeactivated,
    Conflict,
    InvalidCredentials,
    NotFound,
    RateLimited,
    ValidationError,
)
from forumfiles.core.security import ensure_not_self, get_password_hash, pwd_context, verify_password
from forumfiles.models.file import File
from forumfiles.models.user import ROLE_ADMIN, ROLE_USER, User
from forumfiles.models.verification_code import VerificationCode
from forumfiles.utils.email import send_verification_code

logger = logging.getLogger("forumfiles")


def generate_verification_code(length: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


@dataclass
class UserSummary:
    user: User
    files_count: int
    total_file_size: int


class CredentialStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
        return result.scalars().first()

    async def get_by_id(self, user_id: str) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id, User.is_deleted.is_(False)))
        user = result.scalars().first()
        if user is None:
            raise NotFound("User not found")
        return user

    async def register(self, email: str, password: str, role: str = ROLE_USER) -> User:
        if len(password) < 6:
            raise ValidationError("Password must be at least 6 characters long")
        email = email.strip()
        if await self.get_by_email(email) is not None:
            raise Conflict("Email already registered", kind="duplicate_email")

        user = User(email=email, hashed_password=get_password_hash(password), role=role)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("Email already registered", kind="duplicate_email")
        await self.db.refresh(user)
        logger.info("User registered id=%s role=%s", user.id, user.role)
        return user

    async def authenticate(self, email: str, password: str) -> User:
        user = await self.get_by_email(email)
        if user is None or user.is_deleted:
            pwd_context.dummy_verify()
            raise InvalidCredentials()
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentials()
        if not user.is_active:
            raise AccountDeactivated()
        return user

    async def issue_login_code(self, email: str, now: Optional[datetime] = None) -> int:
        """Create a one-time login code and mail it when the address is known.

        A row is written for unknown addresses too, so the cooldown and the
        response look the same whether or not the email is registered.
        Returns the code lifetime in seconds.
        """
        now = now or datetime.utcnow()
        email_key = email.strip().lower()

        cooldown_start = now - timedelta(seconds=settings.VERIFICATION_CODE_COOLDOWN_SECONDS)
        recent = await self.db.execute(
            select(VerificationCode.id).where(
                VerificationCode.email == email_key,
                VerificationCode.created_at > cooldown_start,
            )
        )
        if recent.first() is not None:
            raise RateLimited("Please wait before requesting another verification code")

        ttl = timedelta(minutes=settings.VERIFICATION_CODE_TTL_MINUTES)
        code = generate_verification_code()
        self.db.add(VerificationCode(email=email_key, code=code, expires_at=now + ttl, created_at=now))
        await self.db.commit()

        user = await self.get_by_email(email_key)
        if user is not None and user.is_active and not user.is_deleted:
            await send_verification_code(user.email, code, settings.VERIFICATION_CODE_TTL_MINUTES)
            logger.info("Verification code issued for user id=%s", user.id)
        return int(ttl.total_seconds())

    async def verify_login_code(self, email: str, code: str, now: Optional[datetime] = None) -> User:
        now = now or datetime.utcnow()
        email_key = email.strip().lower()
        invalid = InvalidCredentials("Invalid or expired verification code", kind="invalid_code")

        result = await self.db.execute(
            select(VerificationCode)
            .where(
                VerificationCode.email == email_key,
                VerificationCode.is_used.is_(False),
                VerificationCode.expires_at > now,
            )
            .order_by(VerificationCode.created_at.desc())
            .limit(1)
        )
        record = result.scalars().first()
        if record is None:
            raise invalid

        if not secrets.compare_digest(record.code.encode(), code.strip().encode()):
            attempts = record.attempts + 1
            await self.db.execute(
                update(VerificationCode)
                .where(VerificationCode.id == record.id)
                .values(attempts=attempts, is_used=attempts >= settings.VERIFICATION_CODE_MAX_ATTEMPTS)
            )
            await self.db.commit()
            raise invalid

        consumed = await self.db.execute(
            update(VerificationCode)
            .where(VerificationCode.id == record.id, VerificationCode.is_used.is_(False))
            .values(is_used=True)
        )
        await self.db.commit()
        if consumed.rowcount != 1:
            raise invalid

        user = await self.get_by_email(email_key)
        if user is None or user.is_deleted:
            raise invalid
        if not user.is_active:
            raise AccountDeactivated()
        return user

    async def list_users(self, page: int, limit: int, search: str = "") -> tuple[list[UserSummary], int]:
        live_files = and_(File.owner_id == User.id, File.is_deleted.is_(False))
        conditions = [User.is_deleted.is_(False)]
        if search:
            conditions.append(User.email.ilike(f"%{search}%"))

        query = (
            select(
                User,
                func.count(File.id),
                func.coalesce(func.sum(File.size), 0),
            )
            .outerjoin(File, live_files)
            .where(*conditions)
            .group_by(User.id)
            .order_by(User.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = (await self.db.execute(query)).all()
        total = (await self.db.execute(select(func.count(User.id)).where(*conditions))).scalar_one()
        return [UserSummary(user=u, files_count=c, total_file_size=int(s)) for u, c, s in rows], total

    async def list_admins(self) -> list[User]:
        result = await self.db.execute(
            select(User)
            .where(User.role == ROLE_ADMIN, User.is_deleted.is_(False))
            .order_by(User.created_at.asc())
        )
        return list(result.scalars().all())

    async def set_active(self, actor: User, user_id: str, is_active: bool) -> User:
        if not is_active:
            ensure_not_self(actor, user_id, "deactivate")
        user = await self.get_by_id(user_id)
        user.is_active = is_active
        await self.db.commit()
        logger.info("User id=%s active=%s by admin id=%s", user.id, is_active, actor.id)
        return user

    async def set_role(self, actor: User, user_id: str, role: str) -> User:
        if role not in (ROLE_USER, ROLE_ADMIN):
            raise ValidationError("role must be 'user' or 'admin'")
        if role != ROLE_ADMIN:
            ensure_not_self(actor, user_id, "remove the admin role from")
        user = await self.get_by_id(user_id)
        user.role = role
        await self.db.commit()
        logger.info("User id=%s role=%s by admin id=%s", user.id, role, actor.id)
        return user

    async def soft_delete(self, actor: User, user_id: str) -> tuple[User, int]:
        """Hide a user and soft-delete every file they own, in one transaction."""
        ensure_not_self(actor, user_id, "delete")
        user = await self.get_by_id(user_id)
        now = datetime.utcnow()

        user.is_deleted = True
        user.is_active = False
        files = await self.db.execute(
            update(File)
            .where(File.owner_id == user.id, File.is_deleted.is_(False))
            .values(is_deleted=True, deleted_at=now)
        )
        await self.db.commit()
        logger.info("User id=%s deleted by admin id=%s, files soft-deleted=%s", user.id, actor.id, files.rowcount)
        return user, files.rowcount

    async def ensure_admin(self, email: str, password: str) -> tuple[User, bool]:
        """Make sure ``email`` is a live admin; returns the user and whether anything changed.

        A soft-deleted account keeps its email, so it is restored rather
        than registered again.
        """
        existing = await self.get_by_email(email)
        if existing is None:
            return await self.register(email, password, role=ROLE_ADMIN), True
        if not existing.is_deleted:
            return existing, False

        existing.is_deleted = False
        existing.is_active = True
        existing.role = ROLE_ADMIN
        existing.hashed_password = get_password_hash(password)
        await self.db.commit()
        logger.info("Admin user restored id=%s", existing.id)
        return existing, True
