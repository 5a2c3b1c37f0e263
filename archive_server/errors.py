"""
Error types for the archive server.

This module defines the exceptions raised by the store and the lifecycle
manager:
- ArchiveError: Base exception
- ArchiveNotFoundError: No record for the given ID
- StoreUnavailableError: The record store could not serve the request
- IdGenerationError: No randomness available to build an ID
- InvalidTransitionError: Requested status change is not allowed
- ArchiveRemovalError: Status updated but the payload could not be removed

Build failures are not exceptions: they are recorded into the archive's
status and log by the population task.

Invariants:
    - All errors inherit from ArchiveError
    - ArchiveNotFoundError and StoreUnavailableError are never conflated
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .archive.models import ArchiveRecord, ArchiveStatus


class ArchiveError(Exception):
    """Base exception for all archive server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ARCHIVE_ERROR"
        self.details = details or {}


class ArchiveNotFoundError(ArchiveError):
    """No archive record exists for the requested ID."""

    def __init__(self, archive_id: str) -> None:
        super().__init__(
            "archive not found",
            code="NOT_FOUND",
            details={"archive_id": archive_id},
        )
        self.archive_id = archive_id


class StoreUnavailableError(ArchiveError):
    """The record store is unreachable or failed for reasons unrelated to the query.

    Raised when:
    - The database file cannot be opened
    - A statement fails with an operational error
    - The store has been closed or taken offline
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(
            message,
            code="STORE_UNAVAILABLE",
            details={"operation": operation},
        )
        self.operation = operation


class IdGenerationError(ArchiveError):
    """The identifier generator could not obtain randomness."""

    def __init__(self, name: str) -> None:
        super().__init__(
            "could not generate archive id",
            code="ID_GENERATION_FAILED",
            details={"name": name},
        )


class InvalidTransitionError(ArchiveError):
    """A status change was requested that the state machine does not allow."""

    def __init__(
        self,
        archive_id: str,
        current: ArchiveStatus,
        target: ArchiveStatus,
    ) -> None:
        super().__init__(
            f"cannot move archive from {current} to {target}",
            code="INVALID_TRANSITION",
            details={
                "archive_id": archive_id,
                "current": str(current),
                "target": str(target),
            },
        )
        self.current = current
        self.target = target


class ArchiveRemovalError(ArchiveError):
    """The archive was marked destroyed but its payload could not be removed.

    The status update has already been applied when this is raised; the
    payload file is left orphaned on disk.

    Attributes:
        record: The record as it was after the status update
    """

    def __init__(self, record: ArchiveRecord, reason: str) -> None:
        super().__init__(
            f"archive destroyed but payload not removed: {reason}",
            code="REMOVAL_FAILED",
            details={"archive_id": record.id, "path": str(record.path)},
        )
        self.record = record
