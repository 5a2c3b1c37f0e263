"""
Unit tests for the read and write HTTP APIs.

Tests cover:
- Creating archives from a git reference and from an upload
- Status and health endpoints
- Serve-once reads and their error mapping
"""

import asyncio

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from archive_server.api import http_server
from archive_server.api.http_server import create_read_app, create_write_app
from archive_server.archive.models import ArchiveStatus
from archive_server.config import HttpConfig


@pytest_asyncio.fixture
async def write_client(manager):
    """Client for the write API, with a small upload limit."""
    app = create_write_app(manager, HttpConfig(upload_spool_bytes=16, upload_max_bytes=32))
    client = TestClient(TestServer(app))
    await client.start_server()
    yield client
    await client.close()
    await manager.drain()


@pytest_asyncio.fixture
async def read_client(manager):
    """Client for the read API."""
    client = TestClient(TestServer(create_read_app(manager)))
    await client.start_server()
    yield client
    await client.close()
    await manager.drain()


async def make_ready(manager, wait_settled):
    record = await manager.create_from_source("/repo", "abc123")
    return await wait_settled(manager, record.id)


def record_offloads(monkeypatch):
    """Record the callables the HTTP handlers hand to worker threads."""
    offloaded = []
    to_thread = asyncio.to_thread

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(getattr(func, "__name__", repr(func)))
        return await to_thread(func, *args, **kwargs)

    monkeypatch.setattr(http_server.asyncio, "to_thread", recording_to_thread)
    return offloaded


class TestWriteApi:
    """Tests for the write API."""

    @pytest.mark.asyncio
    async def test_create(self, write_client, manager, builder, wait_settled):
        resp = await write_client.post(
            "/", data={"path": "/repo", "refid": "abc123", "prefix": "proj"}
        )

        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "building"
        settled = await wait_settled(manager, body["id"])
        assert settled.status == ArchiveStatus.READY
        assert builder.calls[0][0:2] == ("/repo", "abc123")
        assert builder.calls[0][3] == "proj/"

    @pytest.mark.asyncio
    async def test_create_requires_path_and_refid(self, write_client, store):
        resp = await write_client.post("/", data={"path": "/repo"})

        assert resp.status == 400
        assert await resp.text() == "path and refid are required"
        assert store.get_record_count() == 0

    @pytest.mark.asyncio
    async def test_create_store_down(self, write_client, store):
        store.set_available(False)

        resp = await write_client.post("/", data={"path": "/repo", "refid": "abc123"})

        assert resp.status == 500
        body = await resp.json()
        assert body["error_code"] == "STORE_UNAVAILABLE"
        assert body["error"] == "archive operation failed"

    @pytest.mark.asyncio
    async def test_upload(self, write_client, manager, wait_settled):
        resp = await write_client.post(
            "/upload", params={"name": "bundle.tar.gz"}, data=b"hello world!"
        )

        assert resp.status == 200
        body = await resp.json()
        settled = await wait_settled(manager, body["id"])
        assert settled.status == ArchiveStatus.READY
        assert settled.path.read_bytes() == b"hello world!"

    @pytest.mark.asyncio
    async def test_upload_spilled_to_disk(self, write_client, manager, wait_settled, monkeypatch):
        """Bodies past the spool threshold are written from a worker thread."""
        offloaded = record_offloads(monkeypatch)
        data = b"0123456789" * 3

        resp = await write_client.post("/upload", params={"name": "bundle"}, data=data)

        assert resp.status == 200
        settled = await wait_settled(manager, (await resp.json())["id"])
        assert settled.path.read_bytes() == data
        assert "write" in offloaded

    @pytest.mark.asyncio
    async def test_upload_requires_name(self, write_client):
        resp = await write_client.post("/upload", data=b"hello")

        assert resp.status == 400
        assert await resp.text() == "name is required"

    @pytest.mark.asyncio
    async def test_upload_too_large(self, write_client, store):
        resp = await write_client.post("/upload", params={"name": "big"}, data=b"x" * 64)

        assert resp.status == 413
        assert store.get_record_count() == 0

    @pytest.mark.asyncio
    async def test_status(self, write_client, manager, wait_settled):
        ready = await make_ready(manager, wait_settled)

        resp = await write_client.get("/status", params={"id": ready.id})

        assert resp.status == 200
        body = await resp.json()
        assert "path" not in body
        assert body == {k: v for k, v in ready.to_dict().items() if k != "path"}

    @pytest.mark.asyncio
    async def test_status_unknown(self, write_client):
        resp = await write_client.get("/status", params={"id": "nope"})

        assert resp.status == 404
        body = await resp.json()
        assert body["error_code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_status_missing_id(self, write_client):
        resp = await write_client.get("/status")

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_health(self, write_client, store):
        resp = await write_client.get("/health")
        assert resp.status == 200
        assert (await resp.json())["healthy"] is True

        store.set_available(False)
        resp = await write_client.get("/health")
        assert resp.status == 503
        assert (await resp.json())["healthy"] is False


class TestReadApi:
    """Tests for the read API."""

    @pytest.mark.asyncio
    async def test_read_serves_once(self, read_client, manager, wait_settled):
        """A READY archive is streamed and then gone."""
        ready = await make_ready(manager, wait_settled)

        resp = await read_client.get("/", params={"id": ready.id})

        assert resp.status == 200
        assert resp.headers["Content-Type"] == "application/x-gzip"
        assert ready.path.name in resp.headers["Content-Disposition"]
        assert await resp.read() == b"fake archive"
        assert (await manager.get(ready.id)).status == ArchiveStatus.DESTROYED
        assert not ready.path.exists()

        resp = await read_client.get("/", params={"id": ready.id})
        assert resp.status == 404
        assert await resp.text() == "archive not found"

    @pytest.mark.asyncio
    async def test_read_file_io_in_worker_threads(
        self, read_client, manager, wait_settled, monkeypatch
    ):
        """Opening and reading the payload happen off the event loop."""
        ready = await make_ready(manager, wait_settled)
        offloaded = record_offloads(monkeypatch)

        resp = await read_client.get("/", params={"id": ready.id})

        assert resp.status == 200
        assert await resp.read() == b"fake archive"
        assert "open" in offloaded
        assert "read" in offloaded

    @pytest.mark.asyncio
    async def test_read_keep(self, read_client, manager, wait_settled):
        ready = await make_ready(manager, wait_settled)

        for _ in range(2):
            resp = await read_client.get("/", params={"id": ready.id, "keep": "1"})
            assert resp.status == 200
            assert await resp.read() == b"fake archive"

        assert (await manager.get(ready.id)).status == ArchiveStatus.READY
        assert ready.path.exists()

    @pytest.mark.asyncio
    async def test_read_unknown(self, read_client):
        resp = await read_client.get("/", params={"id": "nope"})

        assert resp.status == 404
        assert await resp.text() == "archive not found"

    @pytest.mark.asyncio
    async def test_read_missing_id(self, read_client):
        resp = await read_client.get("/")

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_read_building(self, read_client, manager, builder):
        builder.gate = asyncio.Event()
        record = await manager.create_from_source("/repo", "abc123")

        resp = await read_client.get("/", params={"id": record.id})

        assert resp.status == 200
        assert await resp.text() == "BUILDING"
        assert (await manager.get(record.id)).status == ArchiveStatus.BUILDING
        builder.gate.set()

    @pytest.mark.asyncio
    async def test_read_error_returns_log(self, read_client, store, archive_dir):
        store.put_raw(
            "failed",
            str(archive_dir / "failed.tar.gz"),
            ArchiveStatus.ERROR,
            log="fatal: bad revision\n",
        )

        resp = await read_client.get("/", params={"id": "failed"})

        assert resp.status == 500
        assert await resp.text() == "fatal: bad revision\n"

    @pytest.mark.asyncio
    async def test_read_unknown_status(self, read_client, store, archive_dir):
        store.put_raw("odd", str(archive_dir / "odd.tar.gz"), 7)

        resp = await read_client.get("/", params={"id": "odd"})

        assert resp.status == 500
        assert await resp.text() == "unknown error"

    @pytest.mark.asyncio
    async def test_read_store_down(self, read_client, store):
        """Store outages are reported as 500, not 404."""
        store.set_available(False)

        resp = await read_client.get("/", params={"id": "anything"})

        assert resp.status == 500

    @pytest.mark.asyncio
    async def test_read_missing_payload(self, read_client, store, archive_dir):
        """A READY record without a file fails without destroying the record."""
        store.put_raw("ghost", str(archive_dir / "ghost.tar.gz"), ArchiveStatus.READY)

        resp = await read_client.get("/", params={"id": "ghost"})

        assert resp.status == 500
        assert (await store.find_by_id("ghost")).status == ArchiveStatus.READY
