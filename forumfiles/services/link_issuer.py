"""Issuing and administering password-protected public download links."""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from forumfiles.core.config import settings
from forumfiles.core.errors import Conflict, Forbidden, NotFound, ValidationError
from forumfiles.models.file import File
from forumfiles.models.public_link import PublicLink
from forumfiles.models.user import User
from forumfiles.monitoring.setup import report_link_issued

logger = logging.getLogger("forumfiles")

LINK_ACTIVE = "active"
LINK_EXPIRED = "expired"
LINK_EXHAUSTED = "exhausted"
LINK_DEACTIVATED = "deactivated"


def generate_code() -> str:
    return secrets.token_hex(16)


def generate_password(length: Optional[int] = None) -> str:
    length = length or settings.LINK_PASSWORD_LENGTH
    return "".join(secrets.choice("0123456789") for _ in range(length))


def compute_expiry(expires_in: Optional[int], now: datetime) -> Optional[datetime]:
    hours = expires_in or 0
    if hours not in settings.LINK_EXPIRY_CHOICES:
        allowed = ", ".join(str(h) for h in sorted(settings.LINK_EXPIRY_CHOICES) if h)
        raise ValidationError(f"expiresIn must be one of {allowed} hours, or empty for no expiry")
    if hours == 0:
        return None
    return now + timedelta(hours=hours)


def link_status(link: PublicLink, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    if not link.is_active:
        return LINK_DEACTIVATED
    if link.is_expired(now):
        return LINK_EXPIRED
    if link.is_exhausted():
        return LINK_EXHAUSTED
    return LINK_ACTIVE


@dataclass
class IssuedLink:
    link: PublicLink
    password: str

    @property
    def code(self) -> str:
        return self.link.code

    @property
    def expires_at(self) -> Optional[datetime]:
        return self.link.expires_at


class LinkIssuer:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(
        self,
        file_id: str,
        issuer: User,
        expires_in: Optional[int] = None,
        max_downloads: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> IssuedLink:
        if not issuer.is_admin:
            raise Forbidden("Admin access required")
        if max_downloads is not None and max_downloads < 1:
            raise ValidationError("maxDownloads must be a positive integer")

        now = now or datetime.utcnow()
        expires_at = compute_expiry(expires_in, now)

        result = await self.db.execute(select(File.id).where(File.id == file_id, File.is_deleted.is_(False)))
        if result.first() is None:
            raise NotFound("File not found")

        issuer_id = issuer.id
        password = generate_password()
        for attempt in range(1, settings.LINK_CODE_MAX_ATTEMPTS + 1):
            link = PublicLink(
                file_id=file_id,
                code=generate_code(),
                password=password,
                created_by=issuer_id,
                created_at=now,
                expires_at=expires_at,
                max_downloads=max_downloads,
                download_count=0,
                is_active=True,
            )
            self.db.add(link)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning("Link code collision on attempt %s/%s", attempt, settings.LINK_CODE_MAX_ATTEMPTS)
                continue

            report_link_issued()
            logger.info(
                "Public link issued id=%s file=%s by=%s expires_at=%s max_downloads=%s",
                link.id, file_id, issuer_id, expires_at, max_downloads,
            )
            return IssuedLink(link=link, password=password)

        raise Conflict("Could not allocate a unique link code", kind="code_collision")

    async def get_by_code(self, code: str) -> PublicLink:
        result = await self.db.execute(select(PublicLink).where(PublicLink.code == code))
        link = result.scalars().first()
        if link is None:
            raise NotFound("Link not found")
        return link

    async def list_for_file(self, file_id: str) -> list[PublicLink]:
        result = await self.db.execute(
            select(PublicLink).where(PublicLink.file_id == file_id).order_by(PublicLink.created_at.desc())
        )
        return list(result.scalars().all())

    async def deactivate(self, code: str, actor: User) -> PublicLink:
        link = await self.get_by_code(code)
        if link.is_active:
            now = datetime.utcnow()
            await self.db.execute(
                update(PublicLink)
                .where(PublicLink.id == link.id)
                .values(is_active=False, deactivated_at=now)
            )
            await self.db.commit()
            link.is_active = False
            link.deactivated_at = now
            logger.info("Public link deactivated id=%s by=%s", link.id, actor.id)
        return link
