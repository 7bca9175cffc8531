# app/db/session.py

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from app.core.config import settings

_is_sqlite = settings.async_db_uri.startswith("sqlite")

# One engine per process; Postgres in deployments, SQLite for local runs
engine = create_async_engine(
    settings.async_db_uri,
    pool_pre_ping=not _is_sqlite,
)

# Slot writers re-read rows explicitly, so committed objects may stay loaded
AsyncSessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


class Base(DeclarativeBase):
    pass


async def get_session() -> AsyncSession:
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
