"""
Archive record store for the archive server.

This module provides a pluggable record store supporting:
- SQLite (production)
- In-memory (for testing and local development)

Invariants:
    - Lookups distinguish "not found" from "store unavailable"
    - Field updates are atomic per record
    - Records are never physically deleted by the server

How to change safely:
    - New backends must implement the ArchiveStore protocol
    - Keep status codes and column names stable
"""

from .base import UPDATABLE_FIELDS, ArchiveStore, create_store
from .memory import InMemoryArchiveStore
from .sqlite import SqliteArchiveStore

__all__ = [
    # Protocol
    "ArchiveStore",
    "UPDATABLE_FIELDS",
    # Factory
    "create_store",
    # Implementations
    "SqliteArchiveStore",
    "InMemoryArchiveStore",
]
