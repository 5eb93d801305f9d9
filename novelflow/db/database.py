"""SQLite database connection, transactions and startup migration."""

import asyncio
import logging
import os
import sqlite3
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from novelflow.db.errors import (
    ConstraintViolationError,
    InitializationError,
    StoreBusyError,
)
from novelflow.db.migrations import MIGRATIONS, Migration, run_migrations

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = "./data/novelflow.db"

# Global database holder
_database: "Database | None" = None


def _is_busy(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class Database:
    """A single aiosqlite connection shared by every in-process caller.

    Operations are serialized by an asyncio lock so that each transaction is
    atomic to other coroutines sharing the connection. The lock is never held
    across operation boundaries.
    """

    def __init__(self, conn: aiosqlite.Connection, lock_timeout: float = 5.0):
        self._conn = conn
        self._lock = asyncio.Lock()
        self.lock_timeout = lock_timeout

    @classmethod
    async def open(
        cls,
        db_path: str,
        lock_timeout: float = 5.0,
        busy_timeout_ms: int = 5000,
    ) -> "Database":
        """Open the database file in autocommit mode and set pragmas."""
        conn = await aiosqlite.connect(
            db_path,
            isolation_level=None,
            timeout=busy_timeout_ms / 1000,
        )
        conn.row_factory = aiosqlite.Row

        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        if db_path != ":memory:":
            await conn.execute("PRAGMA journal_mode = WAL")

        return cls(conn, lock_timeout=lock_timeout)

    @property
    def connection(self) -> aiosqlite.Connection:
        return self._conn

    async def _acquire(self) -> None:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.lock_timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Store lock not acquired within {self.lock_timeout}s")
            raise StoreBusyError(
                f"Store is busy, lock not acquired within {self.lock_timeout}s"
            ) from e

    async def _rollback(self) -> None:
        if self._conn.in_transaction:
            await self._conn.execute("ROLLBACK")

    async def migrate(self, migrations: Sequence[Migration] = MIGRATIONS) -> list[int]:
        """Run pending migrations while holding the store lock."""
        await self._acquire()
        try:
            return await run_migrations(self._conn, migrations)
        finally:
            self._lock.release()

    @asynccontextmanager
    async def transaction(self, immediate: bool = True) -> AsyncIterator[aiosqlite.Connection]:
        """Run one store operation atomically.

        Commits on success and rolls back on any error. Driver errors are
        translated into the store taxonomy.

        Args:
            immediate: Take the write lock up front (``BEGIN IMMEDIATE``).
                Read-only operations pass ``False``.
        """
        await self._acquire()
        try:
            await self._conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield self._conn
                await self._conn.execute("COMMIT")
            except BaseException:
                await self._rollback()
                raise
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError(str(e)) from e
        except sqlite3.OperationalError as e:
            if _is_busy(e):
                raise StoreBusyError(f"Database is busy: {e}") from e
            raise
        finally:
            self._lock.release()

    async def close(self) -> None:
        await self._conn.close()


async def init_database(
    db_path: str,
    migrations: Sequence[Migration] = MIGRATIONS,
) -> Database:
    """Open the database and bring its schema up to date.

    The handle is published to :func:`get_db` only after every pending
    migration has been applied.

    Raises:
        InitializationError: If the schema could not be migrated
    """
    global _database

    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    database = await Database.open(
        db_path,
        lock_timeout=float(os.getenv("DB_LOCK_TIMEOUT", "5")),
        busy_timeout_ms=int(os.getenv("DB_BUSY_TIMEOUT_MS", "5000")),
    )

    try:
        applied = await database.migrate(migrations)
    except InitializationError:
        logger.exception(f"Failed to initialize database at {db_path}")
        await database.close()
        raise

    if applied:
        logger.info(f"Applied migrations {applied} to {db_path}")

    _database = database
    return database


async def close_database() -> None:
    """Close the database connection."""
    global _database
    if _database:
        await _database.close()
        _database = None


async def get_db() -> Database:
    """Get the database handle."""
    if _database is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    return _database
