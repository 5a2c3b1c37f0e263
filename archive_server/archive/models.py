"""
Archive record model and status state machine.

Invariants:
    - Status codes are persisted as small integers and must never be renumbered
    - Any stored code outside the known set decodes to ArchiveStatus.UNKNOWN
    - BUILDING settles exactly once; DESTROYED and ERROR are terminal

How to change safely:
    - Add new statuses with new codes, never reuse an old one
    - Update VALID_TRANSITIONS together with the manager
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any


class ArchiveStatus(IntEnum):
    """Lifecycle status of an archive.

    UNKNOWN is never written; it is what an unrecognized stored code
    decodes to.
    """

    UNKNOWN = -1
    BUILDING = 0
    READY = 1
    ERROR = 2
    DESTROYED = 3

    @classmethod
    def _missing_(cls, value: object) -> ArchiveStatus:
        return cls.UNKNOWN

    def __str__(self) -> str:
        return self.name.lower()

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is defined from this status."""
        return not VALID_TRANSITIONS.get(self)


VALID_TRANSITIONS: dict[ArchiveStatus, frozenset[ArchiveStatus]] = {
    ArchiveStatus.BUILDING: frozenset({ArchiveStatus.READY, ArchiveStatus.ERROR}),
    ArchiveStatus.READY: frozenset({ArchiveStatus.DESTROYED}),
    ArchiveStatus.ERROR: frozenset(),
    ArchiveStatus.DESTROYED: frozenset(),
    ArchiveStatus.UNKNOWN: frozenset(),
}


def can_transition(current: ArchiveStatus, target: ArchiveStatus) -> bool:
    """Return True if the state machine allows current -> target."""
    return target in VALID_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class ArchiveRecord:
    """Persisted metadata for one archive.

    Attributes:
        id: Opaque hex identifier, assigned at creation
        path: Location of the payload file
        status: Current lifecycle status
        log: Diagnostics captured during population
        created_at: Creation timestamp (Unix ms)
        updated_at: Last status change timestamp (Unix ms)
    """

    id: str
    path: Path
    status: ArchiveStatus
    log: str
    created_at: int
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "path": str(self.path),
            "status": str(self.status),
            "log": self.log,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
