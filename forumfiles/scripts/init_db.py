"""Bring the schema to head and make sure the first admin exists.

Usage: ``python -m forumfiles.scripts.init_db``
"""
import asyncio
import subprocess
import sys

from sqlalchemy import create_engine, inspect

from forumfiles.core.config import settings
from forumfiles.core.database import DATABASE_URL, SessionLocal
from forumfiles.services.credentials import CredentialStore


def migrate():
    sync_url = DATABASE_URL.replace("+aiosqlite", "").replace("+asyncpg", "+psycopg2")
    engine = create_engine(sync_url)
    insp = inspect(engine)

    has_alembic = insp.has_table("alembic_version")
    existing_core_tables = any(insp.has_table(t) for t in ("users", "files", "public_links"))
    engine.dispose()

    if existing_core_tables and not has_alembic:
        print("[init-db] Existing tables detected without alembic_version → stamping head")
        subprocess.run(["alembic", "stamp", "head"], check=True)
    else:
        print(f"[init-db] has_alembic={has_alembic}, existing_core_tables={existing_core_tables}")

    subprocess.run(["alembic", "upgrade", "head"], check=True)


async def seed_admin():
    async with SessionLocal() as db:
        user, created = await CredentialStore(db).ensure_admin(settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    if created:
        print(f"[init-db] Admin user created or restored: {user.email}")
    else:
        print(f"[init-db] Admin user already exists: {user.email}")


def main():
    migrate()
    asyncio.run(seed_admin())


if __name__ == "__main__":
    try:
        main()
    except subprocess.CalledProcessError as e:
        print(f"[init-db] Alembic command failed: {e}", file=sys.stderr)
        sys.exit(e.returncode)
    except Exception as e:
        print(f"[init-db] Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)
