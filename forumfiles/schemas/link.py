from datetime import datetime
from typing import Optional

from pydantic import Field

from forumfiles.models.public_link import PublicLink
from forumfiles.schemas.base import CamelModel


class GenerateLinkRequest(CamelModel):
    file_id: str
    expires_in: Optional[int] = Field(None, description="Hours until expiry: 24, 72 or 168; null or 0 for never")
    max_downloads: Optional[int] = None


class GenerateLinkResponse(CamelModel):
    link: str
    link_code: str
    password: str
    expires_at: Optional[datetime]


class LinkInfoResponse(CamelModel):
    filename: str
    description: str
    file_size: int
    mime_type: Optional[str]
    requires_password: bool = True
    expires_at: Optional[datetime]
    download_count: int
    max_downloads: Optional[int]


class RedeemRequest(CamelModel):
    password: str = Field(min_length=1, max_length=64)


class LinkOut(CamelModel):
    """Admin view of a link; the password is never listed."""

    link_code: str
    status: str
    expires_at: Optional[datetime]
    max_downloads: Optional[int]
    download_count: int
    created_at: Optional[datetime]
    created_by: str

    @classmethod
    def from_link(cls, link: PublicLink, status: str) -> "LinkOut":
        return cls(
            link_code=link.code,
            status=status,
            expires_at=link.expires_at,
            max_downloads=link.max_downloads,
            download_count=link.download_count,
            created_at=link.created_at,
            created_by=link.created_by,
        )


class LinkListResponse(CamelModel):
    links: list[LinkOut]
