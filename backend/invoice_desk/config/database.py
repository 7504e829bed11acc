"""
Database configuration and connection management.
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool, QueuePool

from ..models.database import Base


logger = logging.getLogger(__name__)


class DatabaseConfig:
    """Database configuration management."""

    def __init__(self):
        self.database_url = self._get_database_url()
        self.async_database_url = self._get_async_database_url()
        self.echo = os.getenv("DATABASE_ECHO", "false").lower() == "true"
        self.pool_size = int(os.getenv("DATABASE_POOL_SIZE", "10"))
        self.max_overflow = int(os.getenv("DATABASE_MAX_OVERFLOW", "20"))
        self.pool_timeout = int(os.getenv("DATABASE_POOL_TIMEOUT", "30"))
        self.pool_recycle = int(os.getenv("DATABASE_POOL_RECYCLE", "3600"))

    def _get_database_url(self) -> str:
        """Get synchronous database URL from environment."""
        if os.getenv("TESTING", "false").lower() == "true":
            # File-based SQLite so sync (DDL) and async (app) engines share state
            return os.getenv("TEST_SQLITE_URL", "sqlite:///./test_invoice_desk.db")
        url = os.getenv("DATABASE_URL")
        if not url:
            host = os.getenv("DB_HOST", "localhost")
            port = os.getenv("DB_PORT", "5432")
            database = os.getenv("DB_NAME", "invoice_desk")
            username = os.getenv("DB_USER", "postgres")
            password = os.getenv("DB_PASSWORD", "postgres")
            url = f"postgresql+psycopg://{username}:{password}@{host}:{port}/{database}"
        return url

    def _get_async_database_url(self) -> str:
        """Get asynchronous database URL from environment."""
        sync_url = self._get_database_url()
        if sync_url.startswith("sqlite:///"):
            return sync_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        url = os.getenv("ASYNC_DATABASE_URL")
        if not url:
            if sync_url.startswith("postgresql+psycopg://"):
                url = sync_url.replace(
                    "postgresql+psycopg://", "postgresql+asyncpg://", 1)
            elif sync_url.startswith("postgresql://"):
                url = sync_url.replace(
                    "postgresql://", "postgresql+asyncpg://", 1)
            else:
                url = sync_url
        return url


# Global database configuration
db_config = DatabaseConfig()

# Create engines with driver-specific connection arguments
if db_config.database_url.startswith("sqlite"):
    engine = create_engine(
        db_config.database_url,
        echo=db_config.echo,
        connect_args={"check_same_thread": False}
    )
else:
    engine = create_engine(
        db_config.database_url,
        echo=db_config.echo,
        poolclass=QueuePool,
        pool_size=db_config.pool_size,
        max_overflow=db_config.max_overflow,
        pool_timeout=db_config.pool_timeout,
        pool_recycle=db_config.pool_recycle,
        connect_args={
            "application_name": "invoice_desk",
            "options": "-c timezone=UTC"
        }
    )

if db_config.async_database_url.startswith("sqlite+aiosqlite"):
    # No pooling: aiosqlite connections stay bound to the loop that opened them
    async_engine = create_async_engine(
        db_config.async_database_url,
        echo=db_config.echo,
        poolclass=NullPool,
        connect_args={"check_same_thread": False}
    )
else:
    async_engine = create_async_engine(
        db_config.async_database_url,
        echo=db_config.echo,
        pool_size=db_config.pool_size,
        max_overflow=db_config.max_overflow,
        pool_timeout=db_config.pool_timeout,
        pool_recycle=db_config.pool_recycle,
    )

# Session factory
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enforce foreign keys on SQLite so invoice_items cascade with their invoice."""
    module = type(dbapi_connection).__module__
    if "sqlite" not in module:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@event.listens_for(Engine, "before_cursor_execute")
def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Log slow queries for performance monitoring."""
    conn.info.setdefault("query_start_time", []).append(time.time())


@event.listens_for(Engine, "after_cursor_execute")
def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Log slow queries for performance monitoring."""
    starts = conn.info.get("query_start_time")
    if not starts:
        return
    total = time.time() - starts.pop(-1)

    if total > 0.1:
        logger.warning(
            "Slow query detected: %.3fs - %s...", total, statement[:100]
        )


def create_database_tables():
    """Create all database tables."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error("Failed to create database tables: %s", e)
        raise


async def create_database_tables_async():
    """Create all database tables asynchronously."""
    try:
        async with async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully (async)")
    except Exception as e:
        logger.error("Failed to create database tables (async): %s", e)
        raise


def drop_database_tables():
    """Drop all database tables."""
    try:
        Base.metadata.drop_all(bind=engine)
        logger.info("Database tables dropped successfully")
    except Exception as e:
        logger.error("Failed to drop database tables: %s", e)
        raise


@asynccontextmanager
async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Get async database session context manager.

    Usage:
        async with get_async_db() as db:
            # Use async db session
            pass
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_async_db_dependency():
    """
    FastAPI dependency for async database session.

    Usage in FastAPI endpoints:
        @router.get("/invoices")
        async def list_invoices(db: AsyncSession = Depends(get_async_db_dependency)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def check_async_database_connection() -> bool:
    """Check if async database connection is working."""
    try:
        async with get_async_db() as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Async database connection check failed: %s", e)
        return False


def get_database_info() -> dict:
    """Get database connection information for monitoring."""
    return {
        # Hide credentials
        "database_url": db_config.async_database_url.split("@")[-1],
        "pool_size": db_config.pool_size,
        "pool_timeout": db_config.pool_timeout,
        "echo": db_config.echo,
    }


async def async_database_health_check() -> dict:
    """Comprehensive async database health check."""
    try:
        connection_ok = await check_async_database_connection()

        pool = async_engine.pool
        pool_stats = {
            "size": pool.size() if hasattr(pool, "size") else None,
            "checked_out": pool.checkedout() if hasattr(pool, "checkedout") else None,
        }

        return {
            "status": "healthy" if connection_ok else "unhealthy",
            "connection": connection_ok,
            "pool_stats": pool_stats,
            "database_info": get_database_info()
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "connection": False,
            "error": str(e)
        }
