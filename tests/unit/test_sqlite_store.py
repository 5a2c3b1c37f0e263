"""
Unit tests for the SQLite archive record store.

Tests cover:
- Insert and point lookup
- Atomic field updates
- Immutable fields
- Not-found versus unavailable errors
"""

import sqlite3
import time
from pathlib import Path

import pytest
import pytest_asyncio

from archive_server.archive.models import ArchiveRecord, ArchiveStatus
from archive_server.errors import ArchiveNotFoundError, StoreUnavailableError
from archive_server.store.sqlite import SqliteArchiveStore


def make_record(archive_id="a1", status=ArchiveStatus.BUILDING):
    now = int(time.time() * 1000)
    return ArchiveRecord(
        id=archive_id,
        path=Path(f"/var/lib/archives/{archive_id}.tar.gz"),
        status=status,
        log="",
        created_at=now,
        updated_at=now,
    )


class TestSqliteArchiveStore:
    """Tests for SqliteArchiveStore."""

    @pytest_asyncio.fixture
    async def store(self, tmp_path):
        """Create an initialized store."""
        store = SqliteArchiveStore(str(tmp_path / "db" / "archives.db"), wal_mode=False)
        await store.initialize()
        yield store
        await store.close()

    @pytest.mark.asyncio
    async def test_insert_and_find(self, store):
        """Inserted records are returned by ID."""
        record = make_record()
        await store.insert(record)

        fetched = await store.find_by_id("a1")

        assert fetched == record

    @pytest.mark.asyncio
    async def test_find_unknown_is_not_found(self, store):
        with pytest.raises(ArchiveNotFoundError):
            await store.find_by_id("missing")

    @pytest.mark.asyncio
    async def test_update_fields(self, store):
        """Status and log are written together."""
        record = make_record()
        await store.insert(record)

        await store.update_fields(
            "a1",
            {"status": ArchiveStatus.ERROR, "log": "fatal: bad ref", "updated_at": record.updated_at + 5},
        )

        fetched = await store.find_by_id("a1")
        assert fetched.status == ArchiveStatus.ERROR
        assert fetched.log == "fatal: bad ref"
        assert fetched.updated_at == record.updated_at + 5
        assert fetched.created_at == record.created_at
        assert fetched.path == record.path

    @pytest.mark.asyncio
    async def test_update_unknown_is_not_found(self, store):
        with pytest.raises(ArchiveNotFoundError):
            await store.update_fields("missing", {"status": ArchiveStatus.READY})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field_name", ["id", "path", "created_at", "owner"])
    async def test_update_rejects_immutable_fields(self, store, field_name):
        await store.insert(make_record())

        with pytest.raises(ValueError):
            await store.update_fields("a1", {field_name: "x"})

    @pytest.mark.asyncio
    async def test_duplicate_insert_fails(self, store):
        await store.insert(make_record())

        with pytest.raises(StoreUnavailableError):
            await store.insert(make_record())

    @pytest.mark.asyncio
    async def test_unknown_status_code_decodes(self, store, tmp_path):
        """A status code written by something else reads back as UNKNOWN."""
        await store.insert(make_record())
        conn = sqlite3.connect(str(tmp_path / "db" / "archives.db"))
        conn.execute("UPDATE archives SET status = 7 WHERE id = 'a1'")
        conn.commit()
        conn.close()

        fetched = await store.find_by_id("a1")

        assert fetched.status == ArchiveStatus.UNKNOWN
        assert str(fetched.status) == "unknown"

    @pytest.mark.asyncio
    async def test_ping(self, store):
        await store.ping()

    @pytest.mark.asyncio
    async def test_schema_version_recorded_once(self, store):
        """Re-initializing keeps a single row for the current schema version."""
        await store.initialize()

        conn = sqlite3.connect(str(store.db_path))
        try:
            versions = [row[0] for row in conn.execute("SELECT version FROM schema_version")]
        finally:
            conn.close()

        assert versions == [SqliteArchiveStore.SCHEMA_VERSION]

    @pytest.mark.asyncio
    async def test_closed_store_is_unavailable(self, store):
        await store.close()

        with pytest.raises(StoreUnavailableError):
            await store.find_by_id("a1")


class TestUnreachableDatabase:
    """Failures to reach the database are never reported as not-found."""

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        store = SqliteArchiveStore(str(tmp_path / "nowhere" / "archives.db"))

        with pytest.raises(StoreUnavailableError):
            await store.find_by_id("a1")

    @pytest.mark.asyncio
    async def test_missing_schema(self, tmp_path):
        store = SqliteArchiveStore(str(tmp_path / "archives.db"))

        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.insert(make_record())

        assert exc_info.value.operation == "insert"
