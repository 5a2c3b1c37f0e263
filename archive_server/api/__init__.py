"""
API module for the archive server.

This module provides the external HTTP interfaces:
- Write API: create archives, report their status
- Read API: serve each archive once

Both applications share the same ArchiveManager.

Invariants:
    - The API layer validates required inputs; the manager does not
    - Manager errors are mapped to status codes here and nowhere else
"""

from .http_server import create_read_app, create_write_app, start_site

__all__ = [
    "create_read_app",
    "create_write_app",
    "start_site",
]
