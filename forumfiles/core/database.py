from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from .config import settings

DATABASE_URL = settings.DATABASE_URL


def build_engine(url: str = DATABASE_URL, echo: bool = settings.DATABASE_ECHO):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_async_engine(
        url,
        connect_args=connect_args,
        poolclass=NullPool,
        echo=echo,
    )


def build_sessionmaker(bind):
    return sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()

SessionLocal = build_sessionmaker(engine)

Base = declarative_base()


async def get_db():
    async with SessionLocal() as session:
        yield session
