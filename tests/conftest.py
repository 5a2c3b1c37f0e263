"""
Shared fixtures for archive server tests.
"""

import asyncio
import time
from pathlib import Path

import pytest

from archive_server.archive.builder import BuildResult
from archive_server.archive.manager import ArchiveManager
from archive_server.archive.models import ArchiveStatus
from archive_server.config import StorageConfig
from archive_server.store.memory import InMemoryArchiveStore


class FakeBuilder:
    """ArchiveBuilder that records its calls instead of running git."""

    def __init__(self, ok=True, log="", content=b"fake archive"):
        self.ok = ok
        self.log = log
        self.content = content
        self.calls = []
        self.gate = None

    async def build(self, source, ref, output_path, prefix):
        self.calls.append((source, ref, output_path, prefix))
        if self.gate is not None:
            await self.gate.wait()
        if self.ok:
            Path(output_path).write_bytes(self.content)
        return BuildResult(ok=self.ok, log=self.log)


@pytest.fixture
def archive_dir(tmp_path):
    """Directory holding archive payloads."""
    path = tmp_path / "archives"
    path.mkdir()
    return path


@pytest.fixture
def storage(archive_dir):
    """Storage configuration rooted at the temporary archive directory."""
    return StorageConfig(base_dir=str(archive_dir))


@pytest.fixture
def store():
    """Fresh in-memory record store."""
    return InMemoryArchiveStore()


@pytest.fixture
def builder():
    """Fake git builder that succeeds."""
    return FakeBuilder(log="archived 1 file\n")


@pytest.fixture
def manager(store, storage, builder):
    """Archive manager wired to the in-memory store and fake builder."""
    return ArchiveManager(store, storage, builder=builder)


@pytest.fixture
def wait_settled():
    """Poll an archive until it leaves BUILDING."""

    async def _wait(manager, archive_id, timeout=5.0):
        deadline = time.monotonic() + timeout
        while True:
            record = await manager.get(archive_id)
            if record.status != ArchiveStatus.BUILDING:
                return record
            if time.monotonic() > deadline:
                raise AssertionError(f"archive {archive_id} still building after {timeout}s")
            await asyncio.sleep(0.01)

    return _wait
