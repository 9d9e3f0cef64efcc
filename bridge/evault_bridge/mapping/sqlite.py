"""
Shared SQLite plumbing for the mapping stores.

Each store owns one SQLite file. Connections are opened per operation and
SQLite (in WAL mode) arbitrates concurrent access, so unrelated keys are
never serialized behind an application-level lock.

Invariants:
    - Operations are only valid between open() and close()
    - sqlite3 and filesystem errors surface as StorageError
    - Writes run inside BEGIN IMMEDIATE ... COMMIT, rolled back on error

How to change safely:
    - Schema changes must be backward compatible (CREATE ... IF NOT EXISTS)
    - Bump SCHEMA_VERSION in the subclass when adding tables or columns
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import StorageError, StoreClosedError, ValidationError

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current time as Unix milliseconds."""
    return int(time.time() * 1000)


def require_id(value: Any, field_name: str) -> str:
    """Validate that value is a non-empty identifier string.

    Raises:
        ValidationError: If value is not a string or is blank
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"Invalid {field_name}: expected a non-empty string, got {value!r}",
            field_name=field_name,
            value=value,
        )
    return value


class SqliteStore:
    """Base class for a single-file SQLite store with an open/close lifecycle.

    Subclasses implement _create_schema().

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -16000,
    ) -> None:
        """Initialize the store. No I/O happens until open().

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, create: bool = True) -> None:
        """Open the store, creating the database file and schema if needed.

        Args:
            create: Whether to create a missing database. With create=False
                the file must already exist and nothing is written to it.

        Raises:
            StorageError: If the file cannot be created or initialized, or
                is missing and create=False
        """
        if self._open:
            return

        if not create:
            if not self.db_path.is_file():
                raise StorageError(f"Database not found: {self.db_path}", path=str(self.db_path))
            self._open = True
            logger.info(f"Opened existing {type(self).__name__}", extra={"path": str(self.db_path)})
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Cannot create directory for {self.db_path}: {e}", path=str(self.db_path)
            ) from e

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                )
                """
            )
            self._create_schema(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                (self.SCHEMA_VERSION, now_ms()),
            )

        self._open = True
        logger.info(f"Opened {type(self).__name__}", extra={"path": str(self.db_path)})

    async def close(self) -> None:
        """Mark the store closed. Callers must not close with operations in flight."""
        if not self._open:
            return
        self._open = False
        logger.info(f"Closed {type(self).__name__}", extra={"path": str(self.db_path)})

    async def __aenter__(self) -> SqliteStore:
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        raise NotImplementedError

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a connection to an open store.

        Raises:
            StoreClosedError: If open() has not been called or close() has
            StorageError: On any sqlite3 error
        """
        if not self._open:
            raise StoreClosedError(
                f"{type(self).__name__} is not open", path=str(self.db_path)
            )
        with self._connect() as conn:
            yield conn

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn: sqlite3.Connection | None = None
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
            conn.row_factory = sqlite3.Row

            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Storage failure on {self.db_path}: {e}", path=str(self.db_path)) from e
        finally:
            if conn is not None:
                conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a write transaction on a fresh connection.

        BEGIN IMMEDIATE takes the write lock up front so check-then-write
        sequences cannot interleave with other writers.
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
