from datetime import datetime, timedelta

from sqlalchemy import select

from forumfiles.models.file import File
from forumfiles.models.public_link import PublicLink
from forumfiles.models.verification_code import VerificationCode
from forumfiles.schemas.file import FreeText
from forumfiles.services.file_repository import FileRepository
from forumfiles.services.link_issuer import LinkIssuer
from forumfiles.tasks.cleanup import run_cleanup_once

from conftest import PNG_BYTES, FakeUpload


async def _stored(db, storage, owner, name="a.png"):
    return await FileRepository(db, storage).store(owner, FakeUpload(name, PNG_BYTES), FreeText(text=""))


async def test_purges_deleted_files_only(db, storage, user):
    kept = await _stored(db, storage, user, "kept.png")
    gone = await _stored(db, storage, user, "gone.png")
    await FileRepository(db, storage).soft_delete(gone)

    result = await run_cleanup_once(db, storage)
    assert result.objects_purged == 1
    assert result.failed == 0

    assert storage.exists(kept.object_name)
    assert not storage.exists(gone.object_name)
    refreshed = await db.get(File, gone.id, populate_existing=True)
    assert refreshed.storage_purged_at is not None

    # nothing left to do on the next pass
    assert (await run_cleanup_once(db, storage)).objects_purged == 0


async def test_failed_purge_is_retried_later(db, storage, user, monkeypatch):
    from forumfiles.core.config import settings

    monkeypatch.setattr(settings, "CLEANUP_RETRY_ATTEMPTS", 2)
    monkeypatch.setattr(settings, "CLEANUP_RETRY_BACKOFF_SECS", 0)
    record = await _stored(db, storage, user)
    await FileRepository(db, storage).soft_delete(record)

    calls = []
    real_remove = storage.remove

    def flaky_remove(object_name):
        calls.append(object_name)
        raise OSError("storage offline")

    monkeypatch.setattr(storage, "remove", flaky_remove)
    result = await run_cleanup_once(db, storage)
    assert result.failed == 1
    assert len(calls) == 2
    refreshed = await db.get(File, record.id, populate_existing=True)
    assert refreshed.is_deleted is True
    assert refreshed.storage_purged_at is None

    monkeypatch.setattr(storage, "remove", real_remove)
    assert (await run_cleanup_once(db, storage)).objects_purged == 1


async def test_expired_codes_are_removed(db):
    now = datetime.utcnow()
    db.add(VerificationCode(email="a@example.com", code="123456", expires_at=now - timedelta(minutes=1)))
    db.add(VerificationCode(email="b@example.com", code="654321", expires_at=now + timedelta(minutes=5)))
    await db.commit()

    result = await run_cleanup_once(db, None, now=now)
    assert result.codes_deleted == 1
    remaining = (await db.execute(select(VerificationCode.email))).scalars().all()
    assert remaining == ["b@example.com"]


async def test_expired_links_are_left_alone(db, storage, user, admin):
    record = await _stored(db, storage, user)
    issued = await LinkIssuer(db).issue(record.id, admin, expires_in=24)

    await run_cleanup_once(db, storage, now=datetime.utcnow() + timedelta(days=30))
    link = (await db.execute(
        select(PublicLink).where(PublicLink.code == issued.code).execution_options(populate_existing=True)
    )).scalars().first()
    assert link.is_active is True
