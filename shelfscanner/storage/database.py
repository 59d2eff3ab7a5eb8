"""
Async engine and session factory.

SQLite is used for development and tests, PostgreSQL (asyncpg) in
production. Server databases get a bounded pool so a burst of scans
queues on connection acquisition instead of opening unbounded connections.
"""

from typing import Optional

from loguru import logger
from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base


class Database:
    """
    Owns the async engine and the session factory.

    Usage:
        db = Database("sqlite+aiosqlite:///./shelfscanner.db")
        await db.create_tables()
        async with db.session_factory() as session:
            ...
        await db.dispose()
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 5,
        engine: Optional[AsyncEngine] = None,
    ):
        self.database_url = database_url
        self.engine = engine or self._create_engine(database_url, echo, pool_size)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @staticmethod
    def _create_engine(database_url: str, echo: bool, pool_size: int) -> AsyncEngine:
        url = make_url(database_url)
        is_sqlite = url.get_backend_name() == "sqlite"

        kwargs = {"echo": echo, "pool_pre_ping": True}
        if not is_sqlite:
            kwargs.update(
                pool_size=pool_size,
                max_overflow=0,
                pool_timeout=5,
                pool_recycle=1800,
            )

        engine = create_async_engine(database_url, **kwargs)

        if is_sqlite:
            enable_sqlite_foreign_keys(engine)

        logger.info(f"Database engine created for {url.get_backend_name()}")
        return engine

    async def create_tables(self) -> None:
        """Create database tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """Return True when the database answers ``SELECT 1``."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """SQLite ignores ON DELETE clauses unless the pragma is set per connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
