"""Background reconciliation between the file index and object storage.

Soft-deleted files whose bytes are still stored get purged, with retries;
expired verification codes are dropped. Links are left alone so expired
ones keep answering ``Gone``.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from forumfiles.core.config import settings
from forumfiles.core.database import SessionLocal
from forumfiles.core.storage import ObjectStorage, get_storage
from forumfiles.models.file import File
from forumfiles.models.verification_code import VerificationCode
from forumfiles.monitoring.setup import report_cleanup

logger = logging.getLogger("forumfiles")

CLEANED_OBJECTS = 0
CLEANED_CODES = 0
FAILED_PURGES = 0


@dataclass
class CleanupResult:
    objects_purged: int = 0
    codes_deleted: int = 0
    failed: int = 0


async def _retry_remove(storage: ObjectStorage, object_name: str) -> bool:
    """Retry wrapper for object deletion."""
    attempts = settings.CLEANUP_RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            await run_in_threadpool(storage.remove, object_name)
            return True
        except Exception as e:
            logger.warning(f"Object delete failed (attempt {attempt}/{attempts}) "
                           f"object={object_name} err={e}")
            if attempt < attempts:
                await asyncio.sleep(settings.CLEANUP_RETRY_BACKOFF_SECS * attempt)
    return False


async def run_cleanup_once(
    db: AsyncSession,
    storage: ObjectStorage,
    now: Optional[datetime] = None,
) -> CleanupResult:
    now = now or datetime.utcnow()
    result = CleanupResult()

    res = await db.execute(
        select(File)
        .where(File.is_deleted.is_(True), File.storage_purged_at.is_(None))
        .limit(settings.CLEANUP_MAX_RECORDS_PER_LOOP)
    )
    for f in res.scalars().all():
        if await _retry_remove(storage, f.object_name):
            f.storage_purged_at = now
            result.objects_purged += 1
        else:
            result.failed += 1
            logger.error("Failed to delete stored object after retries: %s", f.object_name)
    if result.objects_purged:
        await db.commit()

    codes = await db.execute(delete(VerificationCode).where(VerificationCode.expires_at <= now))
    await db.commit()
    result.codes_deleted = codes.rowcount or 0
    return result


async def cleanup_loop():
    global CLEANED_OBJECTS, CLEANED_CODES, FAILED_PURGES
    logger.info("Cleanup task started: interval=%s max_per_loop=%s",
                settings.CLEANUP_INTERVAL_SECONDS, settings.CLEANUP_MAX_RECORDS_PER_LOOP)
    storage = get_storage()

    while True:
        started = datetime.utcnow()
        try:
            async with SessionLocal() as db:
                result = await run_cleanup_once(db, storage)

            CLEANED_OBJECTS += result.objects_purged
            CLEANED_CODES += result.codes_deleted
            FAILED_PURGES += result.failed

            duration = (datetime.utcnow() - started).total_seconds()
            report_cleanup(result.objects_purged, result.codes_deleted, result.failed, duration)
            logger.info("cleanup_summary objects_purged=%s codes_deleted=%s failed=%s duration=%.3fs "
                        "total_objects=%s total_codes=%s",
                        result.objects_purged, result.codes_deleted, result.failed, duration,
                        CLEANED_OBJECTS, CLEANED_CODES)

            await asyncio.sleep(settings.CLEANUP_INTERVAL_SECONDS)

        except asyncio.CancelledError:
            logger.info("Cleanup task cancelled by shutdown")
            raise
        except Exception as e:
            logger.exception("Cleanup loop error: %s", e)
            await asyncio.sleep(min(60, settings.CLEANUP_INTERVAL_SECONDS))


async def start_cleanup_task():
    return await cleanup_loop()
