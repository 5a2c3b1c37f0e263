"""
SQLite archive record store.

This module persists archive records in a single SQLite database file.
It is the production backend of the ArchiveStore protocol.

Invariants:
    - One row per archive, keyed by id
    - All writes run inside a single BEGIN IMMEDIATE transaction
    - id and path are written once by insert() and never updated
    - Any sqlite3 failure surfaces as StoreUnavailableError

How to change safely:
    - Schema migrations must be backward compatible
    - Never renumber persisted status codes

Table schema:
    archives:
        - id TEXT PRIMARY KEY
        - path TEXT
        - status INTEGER (0 building, 1 ready, 2 error, 3 destroyed)
        - log TEXT
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..archive.models import ArchiveRecord, ArchiveStatus
from ..errors import ArchiveNotFoundError, StoreUnavailableError
from .base import check_update_fields

logger = logging.getLogger(__name__)


class SqliteArchiveStore:
    """SQLite-backed store for archive records.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = SqliteArchiveStore("/var/lib/archives/archives.db")
        >>> await store.initialize()
        >>> record = await store.find_by_id(archive_id)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._closed = False

    @contextmanager
    def _get_connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, translating sqlite3 errors.

        Yields:
            SQLite connection

        Raises:
            StoreUnavailableError: If the store is closed or SQLite fails
        """
        if self._closed:
            raise StoreUnavailableError("Store is closed", operation=operation)

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError(
                f"Cannot open archive database {self.db_path}: {e}", operation=operation
            ) from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.Error as e:
            raise StoreUnavailableError(
                f"Archive database error during {operation}: {e}", operation=operation
            ) from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS archives (
                id TEXT PRIMARY KEY,
                path TEXT NOT NULL,
                status INTEGER NOT NULL,
                log TEXT NOT NULL DEFAULT '',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_archives_status ON archives(status, updated_at);
        """)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (self.SCHEMA_VERSION, int(time.time() * 1000)),
        )

    async def initialize(self) -> None:
        """Create the database directory, file and schema if missing."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(
                f"Cannot create database directory: {e}", operation="initialize"
            ) from e

        with self._get_connection("initialize") as conn:
            self._create_schema(conn)
        logger.info(f"Initialized archive database: {self.db_path}")

    async def insert(self, record: ArchiveRecord) -> None:
        with self._get_connection("insert") as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    """
                    INSERT INTO archives (id, path, status, log, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        str(record.path),
                        int(record.status),
                        record.log,
                        record.created_at,
                        record.updated_at,
                    ),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug("Inserted archive record", extra={"archive_id": record.id})

    async def find_by_id(self, archive_id: str) -> ArchiveRecord:
        with self._get_connection("find_by_id") as conn:
            cursor = conn.execute("SELECT * FROM archives WHERE id = ?", (archive_id,))
            row = cursor.fetchone()

        if row is None:
            raise ArchiveNotFoundError(archive_id)
        return self._row_to_record(row)

    async def update_fields(self, archive_id: str, fields: dict[str, Any]) -> None:
        check_update_fields(fields)
        columns = sorted(fields)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        values = [
            int(fields[column]) if column == "status" else fields[column]
            for column in columns
        ]

        with self._get_connection("update_fields") as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    f"UPDATE archives SET {assignments} WHERE id = ?",
                    (*values, archive_id),
                )
                if cursor.rowcount == 0:
                    conn.execute("ROLLBACK")
                    raise ArchiveNotFoundError(archive_id)
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Updated archive record",
            extra={"archive_id": archive_id, "fields": columns},
        )

    async def ping(self) -> None:
        with self._get_connection("ping") as conn:
            conn.execute("SELECT 1 FROM archives LIMIT 1")

    async def close(self) -> None:
        self._closed = True

    def _row_to_record(self, row: sqlite3.Row) -> ArchiveRecord:
        return ArchiveRecord(
            id=row["id"],
            path=Path(row["path"]),
            status=ArchiveStatus(row["status"]),
            log=row["log"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
