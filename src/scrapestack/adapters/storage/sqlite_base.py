"""Connection management for SQLite storage adapters."""

import asyncio
import json
import sqlite3
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager

import aiosqlite

from scrapestack.core.errors import StoreError


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Translate SQLite failures and undecodable rows into StoreError.

    Args:
        action: Short description of the operation, used in the message.
    """
    try:
        yield
    except (sqlite3.Error, json.JSONDecodeError) as e:
        raise StoreError(f"{action} failed: {e}") from e


class AsyncConnectionManager:
    """Manages aiosqlite connections to a file database.

    Handles one-time schema initialization and opens a connection per
    operation. The database runs in WAL mode so readers never block the
    flushing writer.
    """

    def __init__(self, db_path: str, schema: str) -> None:
        self._db_path = db_path
        self._schema = schema
        self._initialized = False
        self._init_lock: asyncio.Lock | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the initialization lock (lazy to avoid event loop issues)."""
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    @property
    def db_path(self) -> str:
        return self._db_path

    async def ensure_initialized(self) -> None:
        """Initialize database schema once."""
        if self._initialized:
            return
        async with self._get_lock():
            if self._initialized:
                return
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.executescript(self._schema)
                await db.commit()
            self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for a database connection, closed on exit."""
        await self.ensure_initialized()
        db = await aiosqlite.connect(self._db_path)
        try:
            yield db
        finally:
            await db.close()
