import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="forumfiles-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP}/forumfiles.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TMP, "uploads"))
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CLEANUP_ENABLED"] = "false"
os.environ["SENDGRID_API_KEY"] = ""

import pytest
from httpx import ASGITransport, AsyncClient

from forumfiles.core import rate_limit
from forumfiles.core.config import settings
from forumfiles.core.database import Base, build_engine, build_sessionmaker, get_db
from forumfiles.core.security import create_access_token
from forumfiles.core.storage import LocalStorage, get_storage
from forumfiles.main import app
from forumfiles.models.user import ROLE_ADMIN
from forumfiles.services.credentials import CredentialStore

PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89"
    b"\x00\x00\x00\rIDATx\x9cc\xf8\x0f\x00\x00\x01\x01\x00\x05\x18\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
)
PDF_BYTES = (
    b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
    b"2 0 obj\n<< /Type /Pages /Kids [] /Count 0 >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"
)
TEXT_BYTES = b"Meeting notes\nThe forum meets every Tuesday.\n"
ELF_BYTES = b"\x7fELF\x02\x01\x01\x00" + b"\x00" * 8 + b"\x02\x00\x3e\x00" + b"\x00" * 200


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    s = LocalStorage(str(tmp_path / "objects"))
    s.initialize()
    return s


@pytest.fixture
async def client(session_factory, storage):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    rate_limit.reset()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def rate_limits_on(monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", True)
    rate_limit.reset()
    yield
    rate_limit.reset()


@pytest.fixture
async def user(db):
    return await CredentialStore(db).register("alice@example.com", "secret123")


@pytest.fixture
async def other_user(db):
    return await CredentialStore(db).register("bob@example.com", "secret456")


@pytest.fixture
async def admin(db):
    return await CredentialStore(db).register("admin@example.com", "admin123", role=ROLE_ADMIN)


def auth_headers(u) -> dict:
    return {"Authorization": f"Bearer {create_access_token(u)}"}


async def upload(client, headers, content=PNG_BYTES, filename="photo.png", description="", kind=None):
    data = {"description": description}
    if kind is not None:
        data["descriptionKind"] = kind
    return await client.post(
        "/files/upload",
        files={"file": (filename, content, "application/octet-stream")},
        data=data,
        headers=headers,
    )


class FakeUpload:
    """Minimal stand-in for starlette's UploadFile."""

    def __init__(self, filename, content):
        self.filename = filename
        self._content = content

    async def read(self, size=-1):
        if size < 0:
            size = len(self._content)
        chunk, self._content = self._content[:size], self._content[size:]
        return chunk
