import logging
from typing import Optional

from fastapi import APIRouter, Depends, File as FormFile, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from forumfiles.core.database import get_db
from forumfiles.core.rate_limit import upload_limit
from forumfiles.core.security import get_current_user
from forumfiles.core.storage import ObjectStorage, get_storage
from forumfiles.models.file import File
from forumfiles.models.user import User
from forumfiles.schemas.base import MessageResponse, Pagination
from forumfiles.schemas.file import (
    FileDetailResponse,
    FileListResponse,
    FileOut,
    PublicFileListResponse,
    UploadResponse,
    parse_description,
)
from forumfiles.services.file_repository import FileRepository
from forumfiles.utils.streaming import file_response

logger = logging.getLogger("forumfiles")

router = APIRouter(prefix="/files", tags=["Files"])


def get_file_repository(
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> FileRepository:
    return FileRepository(db, storage)


async def delete_and_purge(repo: FileRepository, record: File) -> None:
    """Soft-delete ``record`` then try to drop its bytes right away.

    A failed purge leaves ``storage_purged_at`` empty; the cleanup task
    picks the file up on its next run.
    """
    await repo.soft_delete(record)
    try:
        await repo.purge_object(record)
    except Exception as e:
        logger.warning("Deferred purge for file id=%s: %s", record.id, e)


@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(upload_limit)],
)
async def upload_file(
    file: UploadFile = FormFile(...),
    description: str = Form(""),
    description_kind: Optional[str] = Form(None, alias="descriptionKind"),
    repo: FileRepository = Depends(get_file_repository),
    current_user: User = Depends(get_current_user),
):
    parsed = parse_description(description, description_kind)
    record = await repo.store(current_user, file, parsed)
    return UploadResponse(message="File uploaded successfully", file=FileOut.from_file(record))


@router.get("/my-files", response_model=FileListResponse)
async def my_files(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    repo: FileRepository = Depends(get_file_repository),
    current_user: User = Depends(get_current_user),
):
    rows, total = await repo.list_for_owner(current_user.id, page, limit)
    return FileListResponse(
        files=[FileOut.from_file(f) for f in rows],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/public", response_model=PublicFileListResponse)
async def public_files(repo: FileRepository = Depends(get_file_repository)):
    rows = await repo.list_public()
    return PublicFileListResponse(files=[FileOut.from_file(f) for f in rows])


@router.get("/public/{file_id}/download")
async def download_public_file(file_id: str, repo: FileRepository = Depends(get_file_repository)):
    record = await repo.get_public(file_id)
    obj = await repo.open_for_download(record)
    return file_response(record, obj)


@router.get("/{file_id}", response_model=FileDetailResponse)
async def get_file(
    file_id: str,
    repo: FileRepository = Depends(get_file_repository),
    current_user: User = Depends(get_current_user),
):
    record = await repo.get_owned(file_id, current_user)
    return FileDetailResponse(file=FileOut.from_file(record))


@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    repo: FileRepository = Depends(get_file_repository),
    current_user: User = Depends(get_current_user),
):
    record = await repo.get_owned(file_id, current_user)
    obj = await repo.open_for_download(record)
    logger.info("File downloaded id=%s by=%s", record.id, current_user.id)
    return file_response(record, obj)


@router.delete("/{file_id}", response_model=MessageResponse)
async def delete_file(
    file_id: str,
    repo: FileRepository = Depends(get_file_repository),
    current_user: User = Depends(get_current_user),
):
    record = await repo.get_owned(file_id, current_user)
    await delete_and_purge(repo, record)
    return MessageResponse(message="File deleted successfully")
