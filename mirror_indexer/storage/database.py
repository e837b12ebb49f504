"""
PostgreSQL connection pool for the subject repository.

The repository issues single statements only (every write is an upsert),
so the pool exposes execute/fetchrow/fetchval and nothing transactional.
"""

import logging
from types import TracebackType
from typing import Any

import asyncpg

from mirror_indexer.config.settings import Settings

logger = logging.getLogger(__name__)


class Database:
    """
    asyncpg pool shared by every source worker of the process.

    Usage:
        async with Database.from_settings(settings) as db:
            repo = SubjectRepository(db)
            await repo.create_tables()
    """

    def __init__(
        self,
        database_url: str,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 60.0,
    ):
        self._database_url = database_url
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Build a pool configured from DATABASE_URL and the DB_POOL_* settings."""
        return cls(
            str(settings.database_url),
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )

    async def connect(self) -> None:
        """Open the pool; connection failures propagate to the caller."""
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise
        logger.info(f"Database connected (pool: {self._min_size}-{self._max_size})")

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def execute(self, query: str, *args: Any) -> str:
        """Run one statement and return the PostgreSQL status string."""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """Return True if the pool is open and answers SELECT 1."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False
