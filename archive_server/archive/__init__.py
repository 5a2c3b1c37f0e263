"""
Archive lifecycle for the archive server.

This module handles:
- Identifier generation for new archives
- Producing payloads (git archive or uploaded stream)
- The BUILDING/READY/ERROR/DESTROYED state machine

Invariants:
    - IDs and payload paths never change after creation
    - Every archive is populated exactly once
    - DESTROYED is a tombstone; records are never deleted
"""

from .builder import ArchiveBuilder, BlobWriter, BuildResult, GitArchiveBuilder
from .ids import generate_id
from .manager import ArchiveManager
from .models import VALID_TRANSITIONS, ArchiveRecord, ArchiveStatus

__all__ = [
    "ArchiveManager",
    "ArchiveRecord",
    "ArchiveStatus",
    "VALID_TRANSITIONS",
    "ArchiveBuilder",
    "GitArchiveBuilder",
    "BlobWriter",
    "BuildResult",
    "generate_id",
]
