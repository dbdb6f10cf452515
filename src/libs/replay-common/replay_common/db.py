# src/libs/replay-common/replay_common/db.py
import os
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import (
    POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_HOST, POSTGRES_PORT, POSTGRES_DB,
    DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_STATEMENT_TIMEOUT_MS, SERVICE_NAME,
)


def get_sync_database_url():
    """
    URL used by alembic, which runs on psycopg2.
    DATABASE_URL wins, then HOST_DATABASE_URL for running migrations from a dev box.
    """
    url = os.getenv("DATABASE_URL") or os.getenv("HOST_DATABASE_URL")
    if url:
        return url.replace("postgresql+asyncpg://", "postgresql://")

    return f"postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}"


def get_async_database_url():
    url = os.getenv("DATABASE_URL") or f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}"
    if "asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+asyncpg://")
    return url


def get_server_settings() -> dict:
    """
    Per-connection settings. application_name tells the replay API and the
    housekeeping worker apart in pg_stat_activity when a delete batch stalls.
    """
    return {
        "application_name": SERVICE_NAME,
        "statement_timeout": str(DB_STATEMENT_TIMEOUT_MS),
    }


async_engine = create_async_engine(
    get_async_database_url(),
    pool_pre_ping=True,
    pool_size=DB_POOL_SIZE,
    max_overflow=DB_MAX_OVERFLOW,
    connect_args={"server_settings": get_server_settings()},
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)

async def get_async_db_session() -> AsyncSession:
    """FastAPI dependency yielding one session per request."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
