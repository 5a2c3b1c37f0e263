"""
Archive Server Test Suite.

This package contains:
- unit/: Unit tests (in-memory store, fake builders, aiohttp test client)
- integration/: Integration tests (SQLite store, real git repositories)
"""
