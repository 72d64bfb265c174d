from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field

from forumfiles.schemas.base import CamelModel, Pagination


class AdminUserOut(CamelModel):
    id: str
    email: str
    role: str
    is_active: bool
    files_count: int
    total_file_size: int
    created_at: Optional[datetime]


class UserListResponse(CamelModel):
    users: list[AdminUserOut]
    pagination: Pagination


class ToggleStatusRequest(CamelModel):
    is_active: bool


class ShareFileRequest(CamelModel):
    file_id: str
    recipient_email: EmailStr
    message: Optional[str] = Field(None, max_length=2000)


class AdminOut(CamelModel):
    id: str
    email: str
    is_active: bool
    created_at: Optional[datetime]


class AdminListResponse(CamelModel):
    admins: list[AdminOut]
