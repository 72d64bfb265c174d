import re

import pytest

from forumfiles.core.errors import UnsupportedType
from forumfiles.services.file_repository import build_object_name
from forumfiles.utils.file_validator import resolve_mime_type, sanitize_filename, sniff
from forumfiles.utils.streaming import content_disposition

from conftest import PDF_BYTES, PNG_BYTES


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("report.pdf", "report.pdf"),
        ("my report (final).pdf", "my_report__final_.pdf"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\me\\notes.txt", "notes.txt"),
        ("", "file"),
        (None, "file"),
        ("...", "file"),
    ],
)
def test_sanitize_filename(raw, expected):
    assert sanitize_filename(raw) == expected


def test_sanitize_filename_truncates():
    assert len(sanitize_filename("a" * 400 + ".txt")) == 255


def test_text_types_are_normalised_by_extension():
    assert resolve_mime_type("text/plain", "notes.txt") == "text/plain"
    assert resolve_mime_type("application/json", "data.json") == "text/plain"
    assert resolve_mime_type("text/plain", "table.csv") == "text/csv"


def test_unknown_or_disallowed_types_are_rejected():
    with pytest.raises(UnsupportedType):
        resolve_mime_type("application/x-executable", "tool.png")
    with pytest.raises(UnsupportedType):
        resolve_mime_type(None, "mystery.bin")
    with pytest.raises(UnsupportedType):
        resolve_mime_type("text/html", "page.html")


def test_sniff_reads_magic_numbers(tmp_path):
    png = tmp_path / "x.pdf"
    png.write_bytes(PNG_BYTES)
    assert sniff(str(png), "x.pdf").mime_type == "image/png"

    pdf = tmp_path / "y"
    pdf.write_bytes(PDF_BYTES)
    assert sniff(str(pdf), "y").mime_type == "application/pdf"


def test_object_name_layout():
    name = build_object_name("photo.PNG")
    assert re.fullmatch(r"\d{4}/\d{2}/\d{2}/\d+-[0-9a-f]{12}\.png", name)


def test_content_disposition_handles_unicode():
    header = content_disposition("résumé.pdf")
    assert header.startswith("attachment; ")
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9.pdf" in header
