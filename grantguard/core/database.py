"""Database wiring for the enforcement store.

Every enforcement table lives in one Postgres schema. Request handlers get a
session via ``get_async_session``. Fan-out work (coverage recompute, export
gathering) opens its own sessions from ``async_session_maker`` because a
single ``AsyncSession`` must not be shared across concurrent tasks.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from grantguard.core.config import settings
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by the enforcement models."""


engine = create_async_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_pre_ping=True,
    echo=settings.database_echo,
)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session.

    Services own commit and rollback; anything left open when the request
    ends is discarded.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


def _registered_tables() -> list[str]:
    # Importing the models registers them on Base.metadata
    from grantguard.database import models  # noqa: F401

    return sorted(Base.metadata.tables)


class DatabaseClient:
    """Startup checks and schema bootstrap for the enforcement store."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._connected = False

    async def connect(self) -> None:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception:
            self._connected = False
            LOGGER.error("Could not reach the enforcement database", exc_info=True)
            raise
        self._connected = True
        LOGGER.info("Connected to enforcement database")

    async def disconnect(self) -> None:
        await self.engine.dispose()
        self._connected = False
        LOGGER.info("Enforcement database pool disposed")

    async def create_tables(self) -> None:
        """Create any enforcement table that is missing. Existing tables are left alone."""
        tables = _registered_tables()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        LOGGER.info("Enforcement tables verified", extra={"table_count": len(tables)})

    async def missing_tables(self) -> list[str]:
        """Names of registered enforcement tables absent from the database."""
        expected = _registered_tables()
        async with self.engine.connect() as conn:
            existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
        return [name for name in expected if name not in existing]

    async def health_check(self) -> dict:
        """Report connectivity and whether the enforcement schema is in place.

        Returns:
            dict with ``status`` of ``healthy`` or ``unhealthy``. When healthy
            it also lists any missing tables.
        """
        try:
            missing = await self.missing_tables()
        except Exception as e:
            self._connected = False
            LOGGER.error("Database health check failed", extra={"error": str(e)})
            return {"status": "unhealthy", "connected": False, "error": str(e)}

        self._connected = True
        return {
            "status": "unhealthy" if missing else "healthy",
            "connected": True,
            "missing_tables": missing,
        }

    @property
    def is_connected(self) -> bool:
        return self._connected


db_client = DatabaseClient(engine)


async def init_database(auto_migrate: bool = True) -> None:
    """Connect and, when ``auto_migrate`` is set, create missing tables.

    Production deployments run the alembic migration instead and start with
    ``AUTO_MIGRATE=false``.
    """
    await db_client.connect()
    if auto_migrate:
        await db_client.create_tables()


async def close_database() -> None:
    await db_client.disconnect()
