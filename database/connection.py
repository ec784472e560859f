"""Database connection and session management."""

import logging
from collections.abc import AsyncGenerator
from typing import Any
from urllib.parse import parse_qs, urlparse, urlunparse

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from core.config import settings

logger = logging.getLogger(__name__)


def build_database_url(raw_url: str) -> str:
    """Normalize a database URL for the async driver."""
    database_url = raw_url

    # asyncpg rejects libpq-only query parameters
    if "sslmode=" in database_url or "channel_binding=" in database_url:
        parsed = urlparse(database_url)
        query_params = parse_qs(parsed.query)
        query_params.pop("sslmode", None)
        query_params.pop("channel_binding", None)
        new_query = "&".join([f"{k}={v[0]}" for k, v in query_params.items()])
        database_url = urlunparse(
            (
                parsed.scheme,
                parsed.netloc,
                parsed.path,
                parsed.params,
                new_query,
                parsed.fragment,
            )
        )
        logger.info("Removed asyncpg-incompatible SSL parameters from database URL")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)

    return database_url


def build_engine_kwargs(database_url: str) -> dict[str, Any]:
    """Engine arguments for the configured backend."""
    engine_kwargs: dict[str, Any] = {"echo": False, "echo_pool": False}

    if database_url.startswith("postgresql+asyncpg://"):
        engine_kwargs["connect_args"] = {
            "command_timeout": 60,
            "server_settings": {
                "timezone": "UTC",
                "application_name": "kineai-api",
            },
        }

    if settings.use_null_pool:
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs.update(
            {
                "pool_size": settings.database_pool_size,
                "max_overflow": settings.database_max_overflow,
                "pool_timeout": 30,
                "pool_recycle": 3600,
                "pool_pre_ping": True,
            }
        )

    return engine_kwargs


database_url = build_database_url(settings.database_url)
engine = create_async_engine(database_url, **build_engine_kwargs(database_url))

# Async session factory
async_session = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,  # Keep objects accessible after commit
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting database sessions.

    One session per request, rolled back if the request fails and closed
    afterwards.
    """
    async with async_session() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Database session error: {e}")
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_database() -> None:
    """Verify connectivity at startup; create tables in debug mode."""
    try:
        from database.models import Base

        async with engine.begin() as conn:
            # Outside debug mode the schema is owned by Alembic migrations
            if settings.debug:
                await conn.run_sync(Base.metadata.create_all)
                logger.info("Database tables created/verified (debug mode)")
            else:
                await conn.execute(text("SELECT 1"))
                logger.info("Database connection verified")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_database() -> None:
    """Close database connections on shutdown."""
    await engine.dispose()
    logger.info("Database connections closed")


async def check_database_health() -> dict[str, str]:
    """
    Check database health for monitoring endpoints.

    Returns:
        dict: Database health status
    """
    try:
        async with async_session() as session:
            result = await session.execute(text("SELECT 1"))
            if result.scalar() == 1:
                return {"status": "healthy", "message": "Database connection OK"}
            return {"status": "unhealthy", "message": "Database query failed"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "message": "Database error"}
