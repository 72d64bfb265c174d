"""Upload content checks: magic-number sniffing and filename sanitising."""
import os
import re
from dataclasses import dataclass
from typing import Optional

from forumfiles.core.config import settings
from forumfiles.core.errors import UnsupportedType

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
MAX_FILENAME_LENGTH = 255

# libmagic reports text-like content under several names
_TEXTUAL_MIME_TYPES = {"application/json", "application/csv", "text/x-markdown", "text/markdown"}


@dataclass
class SniffResult:
    mime_type: str
    detected: Optional[str]


def sanitize_filename(filename: Optional[str]) -> str:
    name = os.path.basename((filename or "").replace("\\", "/"))
    name = _UNSAFE_CHARS.sub("_", name)[:MAX_FILENAME_LENGTH]
    if not name.strip("._"):
        return "file"
    return name


def detect_mime_type(path: str) -> str:
    import magic

    return magic.from_file(path, mime=True)


def resolve_mime_type(detected: Optional[str], filename: str) -> str:
    """Map what libmagic saw to an allow-listed MIME type or raise.

    Plain-text formats carry no magic number, so for the handful of text
    extensions the detected ``text/*`` family is normalised.
    """
    ext = os.path.splitext(filename)[1].lower()
    mime_type = detected or ""

    is_textual = mime_type.startswith("text/") or mime_type in _TEXTUAL_MIME_TYPES
    if is_textual and ext in settings.TEXT_EXTENSIONS:
        mime_type = "text/csv" if ext == ".csv" else "text/plain"

    if not mime_type:
        raise UnsupportedType("Unable to determine file type")
    if mime_type not in settings.ALLOWED_MIME_TYPES:
        raise UnsupportedType(f"File type {mime_type} is not allowed")
    return mime_type


def sniff(path: str, filename: str) -> SniffResult:
    detected = detect_mime_type(path)
    return SniffResult(mime_type=resolve_mime_type(detected, filename), detected=detected)
