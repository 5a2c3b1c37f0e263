"""
Archive lifecycle manager.

The manager owns the archive state machine:

    BUILDING ──▶ READY ──▶ DESTROYED
        │
        └──────▶ ERROR

Creation inserts a BUILDING record and returns at once. Population runs as
a detached asyncio task that produces the payload and settles the record
with a single store update. Destruction tombstones a READY record and then
removes its payload.

Invariants:
    - Exactly one population task runs per record, with no retries
    - The settle update writes status and log together
    - Destroy updates the status before touching the payload file
    - updated_at strictly increases on every transition
    - Population tasks communicate only through the store

How to change safely:
    - Never add a transition back into BUILDING
    - Keep the manager free of HTTP concerns; the API layer maps errors
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from ..errors import (
    ArchiveError,
    ArchiveNotFoundError,
    ArchiveRemovalError,
    IdGenerationError,
    InvalidTransitionError,
)
from .builder import ArchiveBuilder, BlobWriter, BuildResult, GitArchiveBuilder, normalize_prefix
from .ids import generate_id
from .models import ArchiveRecord, ArchiveStatus, can_transition

if TYPE_CHECKING:
    from ..config import StorageConfig
    from ..store.base import ArchiveStore

logger = logging.getLogger(__name__)

Producer = Callable[[Path], Awaitable[BuildResult]]


def _next_timestamp(previous: int) -> int:
    """Current Unix ms, forced past ``previous``."""
    return max(int(time.time() * 1000), previous + 1)


class ArchiveManager:
    """Creates, looks up and destroys archives.

    Attributes:
        store: Record store shared with every population task
        storage: Storage configuration (base directory, file suffix)
        builder: Producer for source + reference archives
        blob_writer: Producer for uploaded archives

    Example:
        >>> manager = ArchiveManager(store, config.storage)
        >>> record = await manager.create_from_source("/srv/repo.git", "v1.0", "app")
        >>> record.status
        <ArchiveStatus.BUILDING: 0>
    """

    def __init__(
        self,
        store: ArchiveStore,
        storage: StorageConfig,
        builder: ArchiveBuilder | None = None,
        blob_writer: BlobWriter | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.builder = builder or GitArchiveBuilder()
        self.blob_writer = blob_writer or BlobWriter()
        self._tasks: set[asyncio.Task] = set()

    def archive_path(self, archive_id: str) -> Path:
        """Payload location for an archive ID."""
        return Path(self.storage.base_dir) / f"{archive_id}{self.storage.suffix}"

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_from_source(
        self,
        source: str,
        ref: str,
        prefix: str = "",
    ) -> ArchiveRecord:
        """Create an archive of ``ref`` from the repository at ``source``.

        Args:
            source: Repository location
            ref: Commit, tag or branch to archive
            prefix: Directory prefix applied inside the archive

        Returns:
            The inserted record, still BUILDING

        Raises:
            IdGenerationError: If no ID could be generated
            StoreUnavailableError: If the record could not be inserted
        """
        prefix = normalize_prefix(prefix)

        async def produce(path: Path) -> BuildResult:
            return await self.builder.build(source, ref, path, prefix)

        return await self._create(source, produce)

    async def create_from_upload(self, stream: BinaryIO, name: str) -> ArchiveRecord:
        """Create an archive whose payload is ``stream`` copied verbatim.

        The manager takes ownership of ``stream`` and closes it.

        Raises:
            IdGenerationError: If no ID could be generated
            StoreUnavailableError: If the record could not be inserted
        """

        async def produce(path: Path) -> BuildResult:
            return await self.blob_writer.write(stream, path)

        try:
            return await self._create(name, produce)
        except ArchiveError:
            stream.close()
            raise

    async def _create(self, name: str, produce: Producer) -> ArchiveRecord:
        archive_id = generate_id(name)
        if not archive_id:
            raise IdGenerationError(name)

        now = int(time.time() * 1000)
        record = ArchiveRecord(
            id=archive_id,
            path=self.archive_path(archive_id),
            status=ArchiveStatus.BUILDING,
            log="",
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(record)

        task = asyncio.create_task(
            self._populate(record, produce),
            name=f"populate-{archive_id[:12]}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info("Archive created", extra={"archive_id": archive_id, "archive_name": name})
        return record

    async def _populate(self, record: ArchiveRecord, produce: Producer) -> None:
        """Produce the payload and settle the record (background task)."""
        try:
            result = await produce(record.path)
        except Exception as e:
            logger.error(f"Archive producer crashed: {e}", exc_info=True)
            result = BuildResult(ok=False, log=str(e))

        status = ArchiveStatus.READY if result.ok else ArchiveStatus.ERROR
        try:
            await self.store.update_fields(
                record.id,
                {
                    "status": status,
                    "log": result.log,
                    "updated_at": _next_timestamp(record.updated_at),
                },
            )
        except ArchiveError as e:
            # No caller to report to; the record stays BUILDING.
            logger.error(
                "Dropped archive status update",
                extra={"archive_id": record.id, "status": str(status), "error": e.message},
            )
            return

        if result.ok:
            logger.info("Archive ready", extra={"archive_id": record.id})
        else:
            logger.warning(
                "Archive build failed",
                extra={"archive_id": record.id, "log": result.log},
            )

    # ------------------------------------------------------------------
    # Get
    # ------------------------------------------------------------------

    async def get(self, archive_id: str) -> ArchiveRecord:
        """Return the current record for ``archive_id``.

        Destroyed records are returned as-is; callers decide to treat
        them as absent.

        Raises:
            ArchiveNotFoundError: If no record exists
            StoreUnavailableError: If the store cannot be reached
        """
        return await self.store.find_by_id(archive_id)

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    async def destroy(self, archive_id: str) -> ArchiveRecord:
        """Tombstone a READY archive and remove its payload.

        Returns:
            The record after the status update

        Raises:
            ArchiveNotFoundError: If no record exists or it is already destroyed
            InvalidTransitionError: If the archive is not READY
            StoreUnavailableError: If the store cannot be reached
            ArchiveRemovalError: If the status was updated but the file was not removed
        """
        record = await self.store.find_by_id(archive_id)
        if record.status == ArchiveStatus.DESTROYED:
            raise ArchiveNotFoundError(archive_id)
        if not can_transition(record.status, ArchiveStatus.DESTROYED):
            raise InvalidTransitionError(archive_id, record.status, ArchiveStatus.DESTROYED)

        updated_at = _next_timestamp(record.updated_at)
        await self.store.update_fields(
            archive_id,
            {"status": ArchiveStatus.DESTROYED, "updated_at": updated_at},
        )
        destroyed = dataclasses.replace(
            record, status=ArchiveStatus.DESTROYED, updated_at=updated_at
        )

        try:
            record.path.unlink()
        except FileNotFoundError:
            logger.warning(
                "Destroyed archive had no payload",
                extra={"archive_id": archive_id, "path": str(record.path)},
            )
        except OSError as e:
            raise ArchiveRemovalError(destroyed, str(e)) from e

        logger.info("Archive destroyed", extra={"archive_id": archive_id})
        return destroyed

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        """Number of population tasks still running."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight population tasks to settle."""
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} archive builds")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
