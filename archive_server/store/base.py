"""
Base protocol for the archive record store.

This module defines the ArchiveStore protocol that all backends must
implement. The lifecycle manager depends on nothing but this contract.

Invariants:
    - insert() fails if the ID already exists
    - update_fields() applies the whole field set atomically
    - Readers never observe a partially applied update
    - id and path are immutable once inserted

How to change safely:
    - Protocol changes require updating all implementations
    - Keep updates unconditional field sets keyed by ID
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..archive.models import ArchiveRecord

if TYPE_CHECKING:
    from ..config import ServerConfig

UPDATABLE_FIELDS = frozenset({"status", "log", "updated_at"})


def check_update_fields(fields: dict[str, Any]) -> None:
    """Reject field sets that touch immutable or unknown columns.

    Raises:
        ValueError: If fields is empty or names a non-updatable field
    """
    if not fields:
        raise ValueError("update_fields requires at least one field")
    invalid = set(fields) - UPDATABLE_FIELDS
    if invalid:
        raise ValueError(f"Fields cannot be updated: {sorted(invalid)}")


@runtime_checkable
class ArchiveStore(Protocol):
    """Protocol for archive record store backends.

    Example:
        >>> store = SqliteArchiveStore("/var/lib/archives/archives.db")
        >>> await store.initialize()
        >>> await store.insert(record)
        >>> await store.update_fields(record.id, {"status": ArchiveStatus.READY})
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create schema, directories).

        Raises:
            StoreUnavailableError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    async def insert(self, record: ArchiveRecord) -> None:
        """Insert a new record.

        Raises:
            StoreUnavailableError: If the write fails
        """
        ...

    @abstractmethod
    async def find_by_id(self, archive_id: str) -> ArchiveRecord:
        """Point lookup by ID.

        Raises:
            ArchiveNotFoundError: If no record has this ID
            StoreUnavailableError: If the lookup fails
        """
        ...

    @abstractmethod
    async def update_fields(self, archive_id: str, fields: dict[str, Any]) -> None:
        """Atomically set fields on the record with this ID.

        Args:
            archive_id: Record key
            fields: Subset of status, log, updated_at

        Raises:
            ValueError: If fields names an immutable or unknown field
            ArchiveNotFoundError: If no record has this ID
            StoreUnavailableError: If the write fails
        """
        ...

    @abstractmethod
    async def ping(self) -> None:
        """Check the backend is reachable.

        Raises:
            StoreUnavailableError: If it is not
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...


def create_store(config: ServerConfig) -> ArchiveStore:
    """Factory function to create a record store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate ArchiveStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryArchiveStore
    from .sqlite import SqliteArchiveStore

    if config.database.backend == StoreBackend.SQLITE:
        return SqliteArchiveStore(
            db_path=config.database.path,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
        )
    elif config.database.backend == StoreBackend.MEMORY:
        return InMemoryArchiveStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.database.backend}")
