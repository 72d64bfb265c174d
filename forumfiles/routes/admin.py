import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File as FormFile, Form, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from forumfiles.core.config import settings
from forumfiles.core.database import get_db
from forumfiles.core.errors import Internal
from forumfiles.core.security import get_current_admin
from forumfiles.models.file_share import FileShare
from forumfiles.models.user import ROLE_ADMIN, ROLE_USER, User
from forumfiles.routes.files import delete_and_purge, get_file_repository
from forumfiles.schemas.admin import (
    AdminListResponse,
    AdminOut,
    AdminUserOut,
    ShareFileRequest,
    ToggleStatusRequest,
    UserListResponse,
)
from forumfiles.schemas.base import MessageResponse, Pagination
from forumfiles.schemas.file import (
    AdminFileListResponse,
    AdminFileOut,
    FileOut,
    PublicFileListResponse,
    UploadResponse,
    parse_description,
)
from forumfiles.schemas.link import GenerateLinkRequest, GenerateLinkResponse, LinkListResponse, LinkOut
from forumfiles.services.credentials import CredentialStore
from forumfiles.services.file_repository import FileRepository
from forumfiles.services.link_issuer import LinkIssuer, link_status
from forumfiles.utils.email import send_file_share, send_link_password
from forumfiles.utils.urls import build_frontend_url

logger = logging.getLogger("forumfiles")

router = APIRouter(prefix="/admin", tags=["Admin"])


def _admin_user_out(summary) -> AdminUserOut:
    user = summary.user
    return AdminUserOut(
        id=user.id,
        email=user.email,
        role=user.role,
        is_active=user.is_active,
        files_count=summary.files_count,
        total_file_size=summary.total_file_size,
        created_at=user.created_at,
    )


# -----------------------------
# Users
# -----------------------------

@router.get("/users", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str = Query(""),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    summaries, total = await CredentialStore(db).list_users(page, limit, search.strip())
    return UserListResponse(
        users=[_admin_user_out(s) for s in summaries],
        pagination=Pagination.build(page, limit, total),
    )


@router.put("/users/{user_id}/toggle-status", response_model=MessageResponse)
async def toggle_user_status(
    user_id: str,
    body: ToggleStatusRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    user = await CredentialStore(db).set_active(admin, user_id, body.is_active)
    state = "activated" if user.is_active else "deactivated"
    return MessageResponse(message=f"User {state} successfully")


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    user, files_deleted = await CredentialStore(db).soft_delete(admin, user_id)
    return {"message": "User deleted successfully", "filesDeleted": files_deleted}


@router.post("/users/{user_id}/set-admin", response_model=MessageResponse)
async def set_admin(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    await CredentialStore(db).set_role(admin, user_id, ROLE_ADMIN)
    return MessageResponse(message="User promoted to admin")


@router.post("/users/{user_id}/remove-admin", response_model=MessageResponse)
async def remove_admin(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    await CredentialStore(db).set_role(admin, user_id, ROLE_USER)
    return MessageResponse(message="Admin role removed")


@router.get("/admins", response_model=AdminListResponse)
async def list_admins(db: AsyncSession = Depends(get_db), admin: User = Depends(get_current_admin)):
    admins = await CredentialStore(db).list_admins()
    return AdminListResponse(admins=[AdminOut.model_validate(a) for a in admins])


# -----------------------------
# Files
# -----------------------------

@router.get("/files", response_model=AdminFileListResponse)
async def list_all_files(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str = Query(""),
    user_id: Optional[str] = Query(None, alias="userId"),
    repo: FileRepository = Depends(get_file_repository),
    admin: User = Depends(get_current_admin),
):
    rows, total = await repo.list_all(page, limit, search.strip(), user_id)
    return AdminFileListResponse(
        files=[AdminFileOut.from_row(f, owner) for f, owner in rows],
        pagination=Pagination.build(page, limit, total),
    )


@router.delete("/files/{file_id}", response_model=MessageResponse)
async def delete_any_file(
    file_id: str,
    repo: FileRepository = Depends(get_file_repository),
    admin: User = Depends(get_current_admin),
):
    record = await repo.get(file_id)
    await delete_and_purge(repo, record)
    logger.info("File id=%s deleted by admin id=%s", file_id, admin.id)
    return MessageResponse(message="File deleted successfully")


@router.post("/share-file", response_model=MessageResponse)
async def share_file(
    body: ShareFileRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    repo: FileRepository = Depends(get_file_repository),
    admin: User = Depends(get_current_admin),
):
    """Mail a fresh public link to ``recipientEmail``; the password follows in a second email."""
    record = await repo.get(body.file_id)
    issuer = LinkIssuer(db)
    issued = await issuer.issue(record.id, admin, expires_in=settings.SHARE_LINK_EXPIRES_IN)
    download_url = build_frontend_url(request, f"/public/{issued.code}")

    sent = await send_file_share(
        body.recipient_email, record.filename, download_url, body.message, issued.expires_at
    )
    if sent:
        sent = await send_link_password(body.recipient_email, record.filename, issued.password)
    if not sent:
        await issuer.deactivate(issued.code, admin)
        raise Internal("Failed to send email")

    db.add(FileShare(
        file_id=record.id,
        shared_by=admin.id,
        recipient_email=body.recipient_email,
        message=body.message,
        created_at=datetime.utcnow(),
    ))
    await db.commit()
    logger.info("File id=%s shared by admin id=%s", record.id, admin.id)
    return MessageResponse(message="File shared successfully")


# -----------------------------
# Public links
# -----------------------------

@router.post("/generate-link", response_model=GenerateLinkResponse)
async def generate_link(
    body: GenerateLinkRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    issued = await LinkIssuer(db).issue(body.file_id, admin, body.expires_in, body.max_downloads)
    return GenerateLinkResponse(
        link=build_frontend_url(request, f"/public/{issued.code}"),
        link_code=issued.code,
        password=issued.password,
        expires_at=issued.expires_at,
    )


@router.get("/files/{file_id}/links", response_model=LinkListResponse)
async def list_file_links(
    file_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    now = datetime.utcnow()
    links = await LinkIssuer(db).list_for_file(file_id)
    return LinkListResponse(links=[LinkOut.from_link(link, link_status(link, now)) for link in links])


@router.post("/links/{code}/deactivate", response_model=MessageResponse)
async def deactivate_link(
    code: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    await LinkIssuer(db).deactivate(code, admin)
    return MessageResponse(message="Link deactivated")


# -----------------------------
# Public files
# -----------------------------

@router.post("/public-files", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_public_file(
    file: UploadFile = FormFile(...),
    description: str = Form(""),
    description_kind: Optional[str] = Form(None, alias="descriptionKind"),
    repo: FileRepository = Depends(get_file_repository),
    admin: User = Depends(get_current_admin),
):
    parsed = parse_description(description, description_kind)
    record = await repo.store(admin, file, parsed, is_public=True)
    return UploadResponse(message="Public file uploaded successfully", file=FileOut.from_file(record))


@router.get("/public-files", response_model=PublicFileListResponse)
async def list_public_files(
    repo: FileRepository = Depends(get_file_repository),
    admin: User = Depends(get_current_admin),
):
    rows = await repo.list_public()
    return PublicFileListResponse(files=[FileOut.from_file(f) for f in rows])


@router.delete("/public-files/{file_id}", response_model=MessageResponse)
async def delete_public_file(
    file_id: str,
    repo: FileRepository = Depends(get_file_repository),
    admin: User = Depends(get_current_admin),
):
    record = await repo.get_public(file_id)
    await delete_and_purge(repo, record)
    return MessageResponse(message="Public file deleted successfully")
