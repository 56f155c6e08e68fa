"""
Async engine and session handling for the extraction store.

PostgreSQL (asyncpg) gets a bounded connection pool sized from
``DatabaseConfig``; SQLite (aiosqlite), used by tests and local runs, keeps
SQLAlchemy's default pool for the dialect.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Union

from loguru import logger
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shared.schemas import DatabaseConfig

from .models import Base


class DatabaseManager:
    """Owns the engine and hands out transactional sessions."""

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 10,
        pool_timeout: int = 30,
    ):
        self.database_url = database_url
        self.echo = echo
        self.pool_size = pool_size
        self.pool_timeout = pool_timeout
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "DatabaseManager":
        return cls(
            config.url,
            echo=config.echo,
            pool_size=config.max_connections,
            pool_timeout=config.timeout_seconds,
        )

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def _engine_options(self) -> dict:
        options = {"echo": self.echo, "pool_pre_ping": True}
        if make_url(self.database_url).get_backend_name() != "sqlite":
            options.update(
                pool_size=self.pool_size,
                max_overflow=self.pool_size * 2,
                pool_timeout=self.pool_timeout,
                pool_recycle=3600,
            )
        return options

    async def initialize(self) -> None:
        """Create the engine and session factory. Safe to call repeatedly."""
        if self.is_initialized:
            return

        safe_url = make_url(self.database_url).render_as_string(hide_password=True)
        logger.info("Connecting to extraction store", url=safe_url)

        self._engine = create_async_engine(self.database_url, **self._engine_options())
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_tables(self) -> None:
        """Create the job, item and usage tables if missing."""
        await self.initialize()
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Extraction store tables ready", tables=sorted(Base.metadata.tables))

    async def drop_tables(self) -> None:
        """Drop every table. Development and tests only."""
        await self.initialize()
        logger.warning("Dropping extraction store tables")
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a session that commits on exit and rolls back on error.

        Yields:
            AsyncSession bound to the manager's engine
        """
        await self.initialize()

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> bool:
        """True when a trivial query round-trips."""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Extraction store health check failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Extraction store connections closed")


_db_manager: Optional[DatabaseManager] = None


def get_database_manager(
    database: Union[str, DatabaseConfig, None] = None, echo: bool = False
) -> DatabaseManager:
    """
    Return the process-wide manager, creating it on first use.

    Args:
        database: Connection URL or DatabaseConfig, required on the first call
        echo: Echo SQL statements when a URL is given
    """
    global _db_manager

    if _db_manager is None:
        if database is None:
            raise ValueError("A database URL or config is required for the first call")
        if isinstance(database, DatabaseConfig):
            _db_manager = DatabaseManager.from_config(database)
        else:
            _db_manager = DatabaseManager(database, echo)

    return _db_manager


async def init_database(
    database: Union[str, DatabaseConfig], create_tables: bool = True, echo: bool = False
) -> DatabaseManager:
    """Initialize the process-wide manager and optionally create the tables."""
    db_manager = get_database_manager(database, echo)
    await db_manager.initialize()
    if create_tables:
        await db_manager.create_tables()
    return db_manager


async def close_database() -> None:
    global _db_manager
    if _db_manager is not None:
        await _db_manager.close()
        _db_manager = None
