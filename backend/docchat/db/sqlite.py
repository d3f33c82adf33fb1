"""SQLite management utilities."""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Sequence, TypeVar

from docchat.core.errors import StorageConnectionError
from docchat.core.logging import get_logger
from docchat.core.retry import retry_async
from docchat.db.vectors import sql_vector_distance_cos

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA temp_store=MEMORY;",
    "PRAGMA busy_timeout=5000;",
)

_CONNECTION_ERROR_MARKERS = (
    "closed",
    "database is locked",
    "unable to open database",
    "disk i/o error",
)


class SQLiteDatabase:
    """Thin wrapper around sqlite3 providing pragmatic defaults."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path.expanduser()
        self._connection: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        if self._connection is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Pool handles hop between worker threads, one task at a time.
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.create_function(
                "vector_distance_cos", 2, sql_vector_distance_cos, deterministic=True
            )
            for pragma in DEFAULT_PRAGMAS:
                self._connection.execute(pragma)
        return self._connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def executescript(self, script: str) -> None:
        conn = self.connect()
        conn.executescript(script)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        conn = self.connect()
        return conn.execute(sql, params or [])

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        cursor = self.execute(sql, params)
        return cursor.fetchall()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self.connect()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_path = Path(__file__).with_name("schema.sql")
            schema_sql = schema_path.read_text(encoding="utf-8")
        self.executescript(schema_sql)


def is_connection_error(exc: BaseException) -> bool:
    """True for sqlite errors that a fresh handle may fix."""
    if not isinstance(exc, (sqlite3.OperationalError, sqlite3.ProgrammingError, sqlite3.InterfaceError)):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _CONNECTION_ERROR_MARKERS)


class ConnectionPool:
    """Fixed-size pool of :class:`SQLiteDatabase` handles for async callers.

    Lifecycle: construct, ``open()`` (also done lazily by ``run``), then
    ``await close()`` on shutdown. Blocking sqlite calls run on worker
    threads; each handle is used by one task at a time. A handle that fails
    with a connection error is discarded and replaced before the retry.
    """

    def __init__(
        self,
        db_path: Path,
        size: int = 4,
        retry_attempts: int = 3,
        retry_initial_delay: float = 1.0,
        handle_factory: Callable[[Path], SQLiteDatabase] = SQLiteDatabase,
    ) -> None:
        self.db_path = db_path.expanduser()
        self.size = size
        self.retry_attempts = retry_attempts
        self.retry_initial_delay = retry_initial_delay
        self._handle_factory = handle_factory
        self._available: asyncio.Queue[SQLiteDatabase] | None = None
        self._handles: list[SQLiteDatabase] = []
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._available is not None and not self._closed

    def open(self) -> None:
        if self.is_open:
            return
        self._closed = False
        self._available = asyncio.Queue()
        self._handles = []
        for _ in range(self.size):
            handle = self._handle_factory(self.db_path)
            self._handles.append(handle)
            self._available.put_nowait(handle)
        logger.info("Opened connection pool for %s (size=%s)", self.db_path, self.size)

    async def close(self) -> None:
        if self._available is None:
            return
        self._closed = True
        handles, self._handles = self._handles, []
        for handle in handles:
            await asyncio.to_thread(handle.close)
        self._available = None
        logger.info("Closed connection pool for %s", self.db_path)

    async def ensure_schema(self) -> None:
        await self.run(lambda db: db.ensure_schema(), label="ensure_schema")

    async def run(self, fn: Callable[[SQLiteDatabase], T], label: str = "storage operation") -> T:
        """Execute ``fn(handle)`` on a worker thread with reconnect-and-retry."""

        async def _once() -> T:
            handle = await self._available_handles().get()
            try:
                return await asyncio.to_thread(fn, handle)
            except Exception as exc:
                if is_connection_error(exc):
                    logger.info("Recreating database handle after connection error")
                    handle = self._replace(handle)
                raise
            finally:
                self._release(handle)

        try:
            return await retry_async(
                _once,
                attempts=self.retry_attempts,
                initial_delay=self.retry_initial_delay,
                retry_on=(sqlite3.Error,),
                should_retry=is_connection_error,
                label=label,
            )
        except sqlite3.Error as exc:
            if is_connection_error(exc):
                raise StorageConnectionError(f"{label} failed: {exc}") from exc
            raise

    async def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        return await self.run(lambda db: db.query(sql, params), label="query")

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Execute a write statement, commit, and return the affected row count."""

        def _write(db: SQLiteDatabase) -> int:
            with db.transaction() as cursor:
                cursor.execute(sql, params or [])
                return cursor.rowcount

        return await self.run(_write, label="execute")

    def _available_handles(self) -> asyncio.Queue[SQLiteDatabase]:
        if not self.is_open:
            self.open()
        available = self._available
        if available is None:
            raise StorageConnectionError(f"connection pool for {self.db_path} is not open")
        return available

    def _replace(self, handle: SQLiteDatabase) -> SQLiteDatabase:
        try:
            handle.close()
        except sqlite3.Error:
            logger.debug("Ignoring error while closing broken handle", exc_info=True)
        fresh = self._handle_factory(self.db_path)
        self._handles = [fresh if item is handle else item for item in self._handles]
        return fresh

    def _release(self, handle: SQLiteDatabase) -> None:
        if self._closed or self._available is None:
            handle.close()
            return
        self._available.put_nowait(handle)


__all__ = ["SQLiteDatabase", "ConnectionPool", "is_connection_error"]
