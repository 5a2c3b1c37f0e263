"""
In-memory archive record store.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Provides the same per-key atomicity as the SQLite backend
    - Records are stored immutably and replaced whole on update

How to change safely:
    - Keep interface compatible with the ArchiveStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from pathlib import Path
from typing import Any

from ..archive.models import ArchiveRecord, ArchiveStatus
from ..errors import ArchiveNotFoundError, StoreUnavailableError
from .base import check_update_fields

logger = logging.getLogger(__name__)


class InMemoryArchiveStore:
    """In-memory implementation of ArchiveStore.

    Thread safety:
        Uses an asyncio lock; safe to use from multiple coroutines on one
        event loop.

    Example:
        >>> store = InMemoryArchiveStore()
        >>> await store.initialize()
        >>> await store.insert(record)
    """

    def __init__(self) -> None:
        self._records: dict[str, ArchiveRecord] = {}
        self._lock = asyncio.Lock()
        self._available = True

    async def initialize(self) -> None:
        """Initialize (no-op for in-memory)."""
        self._check_available("initialize")
        logger.debug("InMemoryArchiveStore initialized")

    async def insert(self, record: ArchiveRecord) -> None:
        self._check_available("insert")
        async with self._lock:
            if record.id in self._records:
                raise StoreUnavailableError(
                    f"Duplicate archive id: {record.id}", operation="insert"
                )
            self._records[record.id] = record

    async def find_by_id(self, archive_id: str) -> ArchiveRecord:
        self._check_available("find_by_id")
        record = self._records.get(archive_id)
        if record is None:
            raise ArchiveNotFoundError(archive_id)
        return record

    async def update_fields(self, archive_id: str, fields: dict[str, Any]) -> None:
        check_update_fields(fields)
        self._check_available("update_fields")
        async with self._lock:
            record = self._records.get(archive_id)
            if record is None:
                raise ArchiveNotFoundError(archive_id)
            changes = dict(fields)
            if "status" in changes:
                changes["status"] = ArchiveStatus(changes["status"])
            self._records[archive_id] = dataclasses.replace(record, **changes)

    async def ping(self) -> None:
        self._check_available("ping")

    async def close(self) -> None:
        """Close and clear all data."""
        self._records.clear()
        logger.debug("InMemoryArchiveStore closed")

    def _check_available(self, operation: str) -> None:
        if not self._available:
            raise StoreUnavailableError("Store is offline", operation=operation)

    # Testing helpers

    def set_available(self, available: bool) -> None:
        """Simulate a store outage (testing helper).

        While unavailable every operation raises StoreUnavailableError.
        """
        self._available = available

    def put_raw(
        self,
        archive_id: str,
        path: str,
        status: int,
        log: str = "",
    ) -> ArchiveRecord:
        """Insert a record with an arbitrary status code (testing helper)."""
        now = int(time.time() * 1000)
        record = ArchiveRecord(
            id=archive_id,
            path=Path(path),
            status=ArchiveStatus(status),
            log=log,
            created_at=now,
            updated_at=now,
        )
        self._records[archive_id] = record
        return record

    def get_record_count(self) -> int:
        """Get total record count (testing helper)."""
        return len(self._records)
