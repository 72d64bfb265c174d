"""File repository: the index of uploaded objects.

The ``files`` table is authoritative for visibility. A soft delete only
flips ``is_deleted``; removing the stored object is a separate step
(``purge_object``) that may fail and be retried by the cleanup task
without ever making the file visible again.
"""
import hashlib
import logging
import os
import secrets
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import UploadFile
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from forumfiles.core.config import settings
from forumfiles.core.errors import NotFound, TooLarge, ValidationError
from forumfiles.core.security import ensure_owner
from forumfiles.core.storage import ObjectNotFound, ObjectStorage
from forumfiles.models.file import File
from forumfiles.models.user import User
from forumfiles.schemas.file import FreeText, StructuredSubmission
from forumfiles.utils.file_validator import sanitize_filename, sniff

logger = logging.getLogger("forumfiles")

CHUNK_SIZE = 1024 * 1024


@dataclass
class SpooledUpload:
    path: str
    size: int
    sha256: str


def build_object_name(filename: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    ext = os.path.splitext(filename)[1].lower()[:16]
    return f"{now:%Y/%m/%d}/{int(time.time() * 1000)}-{secrets.token_hex(6)}{ext}"


async def spool_upload(upload: UploadFile, max_size: int) -> SpooledUpload:
    """Copy an upload to a temp file, hashing it and enforcing ``max_size``."""
    digest = hashlib.sha256()
    size = 0
    with tempfile.NamedTemporaryFile(delete=False, prefix="forumfiles-") as tmp:
        temp_path = tmp.name
        try:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_size:
                    raise TooLarge(f"File size exceeds the maximum allowed limit of {max_size // (1024 * 1024)}MB")
                digest.update(chunk)
                tmp.write(chunk)
        except BaseException:
            tmp.close()
            os.remove(temp_path)
            raise
    return SpooledUpload(path=temp_path, size=size, sha256=digest.hexdigest())


class FileRepository:
    def __init__(self, db: AsyncSession, storage: ObjectStorage):
        self.db = db
        self.storage = storage

    async def store(
        self,
        owner: User,
        upload: UploadFile,
        description: FreeText | StructuredSubmission,
        is_public: bool = False,
    ) -> File:
        if upload is None or not upload.filename:
            raise ValidationError("No file uploaded")

        display_name = sanitize_filename(upload.filename)
        spooled = await spool_upload(upload, settings.MAX_UPLOAD_SIZE)
        try:
            if spooled.size == 0:
                raise ValidationError("Uploaded file is empty")
            sniffed = await run_in_threadpool(sniff, spooled.path, display_name)

            object_name = build_object_name(display_name)
            await run_in_threadpool(self.storage.put_file, object_name, spooled.path, sniffed.mime_type)
        finally:
            os.remove(spooled.path)

        record = File(
            owner_id=owner.id,
            object_name=object_name,
            filename=display_name,
            description=description.stored_text(),
            description_kind=description.kind,
            size=spooled.size,
            content_type=sniffed.mime_type,
            sha256=spooled.sha256,
            is_public=is_public,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            await run_in_threadpool(self.storage.remove, object_name)
            raise
        await self.db.refresh(record)
        logger.info(
            "File stored id=%s owner=%s size=%s type=%s public=%s",
            record.id, owner.id, record.size, record.content_type, is_public,
        )
        return record

    async def get(self, file_id: str) -> File:
        result = await self.db.execute(select(File).where(File.id == file_id, File.is_deleted.is_(False)))
        record = result.scalars().first()
        if record is None:
            raise NotFound("File not found")
        return record

    async def get_owned(self, file_id: str, user: User) -> File:
        record = await self.get(file_id)
        ensure_owner(record, user)
        return record

    async def get_public(self, file_id: str) -> File:
        record = await self.get(file_id)
        if not record.is_public:
            raise NotFound("File not found")
        return record

    async def list_for_owner(self, owner_id: str, page: int, limit: int) -> tuple[list[File], int]:
        conditions = [File.owner_id == owner_id, File.is_deleted.is_(False)]
        total = (await self.db.execute(select(func.count(File.id)).where(*conditions))).scalar_one()
        rows = await self.db.execute(
            select(File)
            .where(*conditions)
            .order_by(File.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(rows.scalars().all()), total

    async def list_all(
        self,
        page: int,
        limit: int,
        search: str = "",
        owner_id: Optional[str] = None,
    ) -> tuple[list[tuple[File, User]], int]:
        conditions = [File.is_deleted.is_(False)]
        if search:
            needle = f"%{search}%"
            conditions.append(or_(File.filename.ilike(needle), File.description.ilike(needle)))
        if owner_id:
            conditions.append(File.owner_id == owner_id)

        total = (await self.db.execute(select(func.count(File.id)).where(*conditions))).scalar_one()
        rows = await self.db.execute(
            select(File, User)
            .join(User, File.owner_id == User.id)
            .where(*conditions)
            .order_by(File.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return [(f, u) for f, u in rows.all()], total

    async def list_public(self) -> list[File]:
        rows = await self.db.execute(
            select(File)
            .where(File.is_public.is_(True), File.is_deleted.is_(False))
            .order_by(File.created_at.desc())
        )
        return list(rows.scalars().all())

    async def soft_delete(self, record: File) -> None:
        await self.db.execute(
            update(File)
            .where(File.id == record.id, File.is_deleted.is_(False))
            .values(is_deleted=True, deleted_at=datetime.utcnow())
        )
        await self.db.commit()
        record.is_deleted = True
        logger.info("File soft-deleted id=%s", record.id)

    async def increment_download_count(self, file_id: str) -> bool:
        result = await self.db.execute(
            update(File)
            .where(File.id == file_id, File.is_deleted.is_(False))
            .values(download_count=File.download_count + 1)
        )
        return result.rowcount == 1

    async def object_exists(self, record: File) -> bool:
        return await run_in_threadpool(self.storage.exists, record.object_name)

    async def open_object(self, record: File):
        try:
            return await run_in_threadpool(self.storage.open, record.object_name)
        except ObjectNotFound:
            raise NotFound("File not found on server")

    async def open_for_download(self, record: File):
        """Count one download of ``record`` and open its bytes.

        The counter is committed before the stream starts, so a download
        aborted mid-transfer still counts.
        """
        if not await self.object_exists(record):
            raise NotFound("File not found on server")
        if not await self.increment_download_count(record.id):
            await self.db.rollback()
            raise NotFound("File not found")
        await self.db.commit()
        return await self.open_object(record)

    async def purge_object(self, record: File) -> bool:
        """Remove the stored object of a soft-deleted file and note it in the index."""
        if not record.is_deleted:
            raise ValidationError("Only deleted files can be purged")
        await run_in_threadpool(self.storage.remove, record.object_name)
        await self.db.execute(
            update(File).where(File.id == record.id).values(storage_purged_at=datetime.utcnow())
        )
        await self.db.commit()
        logger.info("Stored object purged for file id=%s", record.id)
        return True
