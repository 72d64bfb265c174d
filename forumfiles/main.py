import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from starlette.concurrency import run_in_threadpool

from forumfiles.core.config import settings
from forumfiles.core.database import Base, SessionLocal, engine
from forumfiles.core.storage import get_storage
from forumfiles.monitoring.setup import setup_monitoring
from forumfiles.routes import admin, auth, files, public
from forumfiles.tasks.cleanup import start_cleanup_task

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("forumfiles")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        async with engine.begin() as conn:
            if engine.url.get_backend_name() == "sqlite":
                await conn.execute(text("PRAGMA journal_mode=WAL;"))
            logger.info("Creating database tables:")
            for table in Base.metadata.tables.values():
                logger.info(f" - Table: {table.name}")
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    try:
        await run_in_threadpool(get_storage().initialize)
        logger.info("Storage initialized backend=%s", settings.STORAGE_BACKEND)
    except Exception as e:
        logger.error(f"Storage initialization failed: {e}")
        raise

    cleanup_task = None
    if settings.CLEANUP_ENABLED:
        cleanup_task = asyncio.create_task(start_cleanup_task())
        logger.info("Background cleanup task started")

    yield

    if cleanup_task is not None:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            logger.info("Cleanup task cancelled")
    logger.info("Application shutdown complete")


app = FastAPI(
    title="ForumFiles",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials="*" not in settings.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length"],
)

app.include_router(auth)
app.include_router(files)
app.include_router(admin)
app.include_router(public)

setup_monitoring(app)


@app.get("/health")
async def health_check():
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as e:
        logger.warning("Health check database error: %s", e)
        db_status = "error"

    return {
        "status": "running",
        "timestamp": datetime.utcnow().isoformat(),
        "database": db_status,
        "storage": settings.STORAGE_BACKEND,
    }


if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info",
        timeout_keep_alive=60,
        limit_concurrency=100
    )
