"""
Archive Server - one-shot delivery of generated source archives.

This package builds compressed archives (from a git reference or from an
uploaded stream), tracks each archive's lifecycle in a durable record store
and serves every archive once over HTTP.

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────┐
    │   Client    │────▶│  Write API  │────▶│ ArchiveManager   │
    │             │     │   (HTTP)    │     │  create / get    │
    └─────────────┘     └─────────────┘     └────────┬─────────┘
           │                                         │ asyncio task
           │            ┌─────────────┐              ▼
           └───────────▶│  Read API   │     ┌──────────────────┐
                        │   (HTTP)    │     │ git archive /    │
                        └──────┬──────┘     │ upload copy      │
                               │            └────────┬─────────┘
                               ▼                     ▼
                        ┌─────────────────────────────────────┐
                        │   Record store (SQLite)  +  payloads │
                        └─────────────────────────────────────┘

Invariants:
    - An archive's ID and payload path never change after creation
    - BUILDING settles exactly once, into READY or ERROR
    - Only READY archives are destroyed; DESTROYED is a tombstone, not a delete
    - Population tasks talk to the rest of the system only through the store

How to change safely:
    - Keep status codes stable; they are persisted as integers
    - New store backends must implement the ArchiveStore protocol
    - Any new transition must be added to VALID_TRANSITIONS

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
