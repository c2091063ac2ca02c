"""Connection handling shared by SQLite storage adapters."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite

MEMORY_DB = ":memory:"


class AsyncConnectionManager:
    """Opens aiosqlite connections and applies the schema exactly once.

    File databases get a fresh connection per operation and run in WAL
    mode. A :memory: database lives only as long as its connection, so it is
    kept open until close().

    Args:
        db_path: Database file path or ":memory:".
        schema: SQL script creating tables and indexes (idempotent).
    """

    def __init__(self, db_path: str, schema: str) -> None:
        self._db_path = db_path
        self._schema = schema
        self._initialized = False
        self._init_lock: asyncio.Lock | None = None
        self._persistent_conn: aiosqlite.Connection | None = None

    @property
    def is_memory(self) -> bool:
        return self._db_path == MEMORY_DB

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so the manager can be built outside an event loop.
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        async with self._get_lock():
            if self._initialized:
                return
            if self.is_memory:
                self._persistent_conn = await aiosqlite.connect(MEMORY_DB)
                await self._persistent_conn.executescript(self._schema)
            else:
                async with aiosqlite.connect(self._db_path) as db:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.executescript(self._schema)
            self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection, closing it afterwards unless it is the :memory: one."""
        await self._ensure_initialized()
        if self.is_memory:
            if self._persistent_conn is None:
                raise RuntimeError("Memory database connection not initialized")
            yield self._persistent_conn
            return
        db = await aiosqlite.connect(self._db_path)
        try:
            yield db
        finally:
            await db.close()

    async def close(self) -> None:
        """Close the persistent :memory: connection, discarding its data."""
        if self._persistent_conn is not None:
            await self._persistent_conn.close()
            self._persistent_conn = None
            self._initialized = False
