import json
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field

from forumfiles.core.errors import ValidationError
from forumfiles.models.file import DESCRIPTION_STRUCTURED, DESCRIPTION_TEXT, File
from forumfiles.models.user import User
from forumfiles.schemas.base import CamelModel, Pagination

MAX_DESCRIPTION_LENGTH = 10_000


class FreeText(CamelModel):
    kind: Literal["text"] = DESCRIPTION_TEXT
    text: str = ""

    def stored_text(self) -> str:
        return self.text


class StructuredSubmission(CamelModel):
    kind: Literal["structured"] = DESCRIPTION_STRUCTURED
    record: dict[str, Any]

    def stored_text(self) -> str:
        return json.dumps(self.record, ensure_ascii=False, separators=(",", ":"))


Description = Annotated[Union[FreeText, StructuredSubmission], Field(discriminator="kind")]


def parse_description(raw: Optional[str], kind: Optional[str]) -> Description:
    """Turn the upload form's description fields into an explicit variant.

    ``structured`` descriptions must be a JSON object; nothing is guessed
    from the text itself.
    """
    raw = raw or ""
    if len(raw) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"description must be at most {MAX_DESCRIPTION_LENGTH} characters")

    kind = (kind or DESCRIPTION_TEXT).strip().lower()
    if kind == DESCRIPTION_TEXT:
        return FreeText(text=raw)
    if kind == DESCRIPTION_STRUCTURED:
        try:
            record = json.loads(raw)
        except ValueError:
            raise ValidationError("description must be valid JSON when descriptionKind is 'structured'")
        if not isinstance(record, dict):
            raise ValidationError("structured description must be a JSON object")
        return StructuredSubmission(record=record)
    raise ValidationError("descriptionKind must be 'text' or 'structured'")


class FileOut(CamelModel):
    id: str
    filename: str
    description: str
    description_kind: str
    file_size: int
    mime_type: Optional[str]
    download_count: int
    is_public: bool
    created_at: Optional[datetime]

    @classmethod
    def from_file(cls, f: File) -> "FileOut":
        return cls(
            id=f.id,
            filename=f.filename,
            description=f.description or "",
            description_kind=f.description_kind or DESCRIPTION_TEXT,
            file_size=f.size,
            mime_type=f.content_type,
            download_count=f.download_count or 0,
            is_public=bool(f.is_public),
            created_at=f.created_at,
        )


class FileOwner(CamelModel):
    id: str
    email: str


class AdminFileOut(FileOut):
    user: FileOwner

    @classmethod
    def from_row(cls, f: File, owner: User) -> "AdminFileOut":
        base = FileOut.from_file(f).model_dump()
        return cls(**base, user=FileOwner(id=owner.id, email=owner.email))


class UploadResponse(CamelModel):
    message: str
    file: FileOut


class FileDetailResponse(CamelModel):
    file: FileOut


class FileListResponse(CamelModel):
    files: list[FileOut]
    pagination: Pagination


class AdminFileListResponse(CamelModel):
    files: list[AdminFileOut]
    pagination: Pagination


class PublicFileListResponse(CamelModel):
    files: list[FileOut]
