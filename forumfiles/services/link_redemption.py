"""Resolving and redeeming public links.

A link is Active until it becomes Expired, Exhausted or Deactivated; none
of those states lead back to Active. ``resolve`` feeds the landing page
and tells expired/exhausted links apart from unknown ones. ``redeem``
re-checks every constraint on each call, then consumes one download with
a conditional UPDATE so concurrent redemptions can never exceed the cap.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from forumfiles.core import rate_limit
from forumfiles.core.config import settings
from forumfiles.core.errors import Gone, InvalidPassword, NotFound, RateLimited
from forumfiles.core.storage import ObjectStorage
from forumfiles.models.file import File
from forumfiles.models.public_link import PublicLink
from forumfiles.monitoring.setup import report_redemption
from forumfiles.services.file_repository import FileRepository
from forumfiles.services.link_issuer import LINK_EXHAUSTED, LINK_EXPIRED, link_status

logger = logging.getLogger("forumfiles")

LINK_NOT_FOUND = "Link not found or expired"


@dataclass
class LinkInfo:
    link: PublicLink
    file: File


@dataclass
class Redemption:
    link: PublicLink
    file: File
    stream: Any


def _gone(status: str) -> Gone:
    if status == LINK_EXPIRED:
        return Gone("Link has expired", reason=LINK_EXPIRED)
    return Gone("Download limit reached", reason=LINK_EXHAUSTED)


class LinkRedemptionEngine:
    def __init__(self, db: AsyncSession, storage: ObjectStorage):
        self.db = db
        self.files = FileRepository(db, storage)

    async def _find_active(self, code: str) -> PublicLink:
        result = await self.db.execute(
            select(PublicLink).where(PublicLink.code == code, PublicLink.is_active.is_(True))
        )
        link = result.scalars().first()
        if link is None:
            raise NotFound(LINK_NOT_FOUND)
        return link

    def _check_usable(self, link: PublicLink, now: datetime) -> None:
        status = link_status(link, now)
        if status in (LINK_EXPIRED, LINK_EXHAUSTED):
            raise _gone(status)

    async def resolve(self, code: str, now: Optional[datetime] = None) -> LinkInfo:
        """Landing-page lookup.

        A ``Gone`` raised here carries the ``LinkInfo`` in ``info`` so the
        page can still say which file the link pointed at.
        """
        now = now or datetime.utcnow()
        link = await self._find_active(code)
        record = await self.files.get(link.file_id)
        info = LinkInfo(link=link, file=record)
        try:
            self._check_usable(link, now)
        except Gone as e:
            e.info = info
            raise
        return info

    async def redeem(
        self,
        code: str,
        password: str,
        now: Optional[datetime] = None,
        client_key: Optional[str] = None,
    ) -> Redemption:
        """Validate ``code``/``password`` and consume one download.

        Counters are committed before the stream is opened. If opening the
        stored object fails afterwards the download stays counted.
        """
        now = now or datetime.utcnow()
        try:
            link = await self._find_active(code)
            self._check_usable(link, now)

            limiter_key = (client_key or "-", code)
            if (rate_limit.is_blocked(settings.REDEMPTION_RATE_LIMIT, "redeem", *limiter_key)
                    or rate_limit.is_blocked(settings.REDEMPTION_CODE_RATE_LIMIT, "redeem-code", code)):
                raise RateLimited("Too many failed attempts, please try again later")
            if not secrets.compare_digest(link.password.encode(), password.encode()):
                rate_limit.record_failure(settings.REDEMPTION_RATE_LIMIT, "redeem", *limiter_key)
                rate_limit.record_failure(settings.REDEMPTION_CODE_RATE_LIMIT, "redeem-code", code)
                raise InvalidPassword()

            record = await self.files.get(link.file_id)
            if not await self.files.object_exists(record):
                logger.error("Stored object missing for file id=%s", record.id)
                raise NotFound("File not found on server")

            await self._consume(link, record, now)
        except (NotFound, Gone, InvalidPassword, RateLimited) as e:
            report_redemption(e.kind)
            raise

        report_redemption("success")
        logger.info("Public link redeemed id=%s file=%s count=%s", link.id, record.id, link.download_count)
        stream = await self.files.open_object(record)
        return Redemption(link=link, file=record, stream=stream)

    async def _consume(self, link: PublicLink, record: File, now: datetime) -> None:
        # rollback expires loaded instances
        link_id, file_id = link.id, record.id
        consumed = await self.db.execute(
            update(PublicLink)
            .where(
                PublicLink.id == link_id,
                PublicLink.is_active.is_(True),
                or_(PublicLink.expires_at.is_(None), PublicLink.expires_at > now),
                or_(
                    PublicLink.max_downloads.is_(None),
                    PublicLink.download_count < PublicLink.max_downloads,
                ),
            )
            .values(download_count=PublicLink.download_count + 1)
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount != 1:
            await self.db.rollback()
            await self._raise_for_lost_race(link_id, now)

        if not await self.files.increment_download_count(file_id):
            await self.db.rollback()
            raise NotFound("File not found")

        await self.db.commit()
        link.download_count += 1

    async def _raise_for_lost_race(self, link_id: str, now: datetime) -> None:
        """Another request changed the link between our read and our update."""
        result = await self.db.execute(
            select(PublicLink).where(PublicLink.id == link_id).execution_options(populate_existing=True)
        )
        current = result.scalars().first()
        status = link_status(current, now) if current is not None else None
        if status in (LINK_EXPIRED, LINK_EXHAUSTED):
            raise _gone(status)
        if status is None or not current.is_active:
            raise NotFound(LINK_NOT_FOUND)
        raise _gone(LINK_EXHAUSTED)
