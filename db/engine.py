"""
MAILDECK - Storage Engine

Async SQLAlchemy engine and session management on top of asyncpg.
"""
from typing import AsyncGenerator, List, Optional
from contextlib import asynccontextmanager

from sqlalchemy import inspect as sa_inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import DatabaseConfig
from observability.logging import get_logger


logger = get_logger("maildeck.db.engine")


class StorageEngine:
    """
    Async storage client shared by the bootstrap stages.

    Features:
    - Connection pooling with asyncpg
    - Automatic session management (commit on success, rollback on error)
    - Connectivity probe and schema introspection for startup checks
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def url(self) -> str:
        return self.config.url

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Storage engine is not initialized")
        return self._engine

    async def initialize(self) -> None:
        """Create the engine and session factory. Does not connect."""
        if self._engine is not None:
            return

        kwargs = {"echo": self.config.echo, "pool_pre_ping": True}
        if not self.url.startswith("sqlite"):
            kwargs.update(
                pool_size=self.config.pool_size,
                max_overflow=self.config.max_overflow,
                pool_timeout=self.config.pool_timeout,
                pool_recycle=1800,
            )
        self._engine = create_async_engine(self.url, **kwargs)

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        logger.debug(
            "Storage engine initialized",
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            component="DB",
        )

    async def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.debug("Storage connections closed", component="DB")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional session: commits on success, rolls back on error."""
        if self._session_factory is None:
            await self.initialize()

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> None:
        """Round-trip a trivial query; raises if storage is unreachable."""
        await self.initialize()
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def table_names(self) -> List[str]:
        """Names of the tables present in the connected database."""
        await self.initialize()
        async with self.engine.connect() as conn:
            return await conn.run_sync(lambda sync_conn: sa_inspect(sync_conn).get_table_names())
