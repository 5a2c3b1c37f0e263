"""
Archive payload producers.

Two producers fill an archive's payload file:
- GitArchiveBuilder runs ``git archive`` against a repository and writes
  a gzip-compressed tarball of the requested reference
- BlobWriter copies an uploaded byte stream verbatim

Neither raises on failure. Both return a BuildResult carrying a success
flag and the diagnostics to store in the archive's log.

Invariants:
    - Output and diagnostics are captured whether the build succeeds or not
    - The prefix handed to git always ends with "/" (or is empty)
    - A reference is never parsed by git as an option
    - BlobWriter always closes the source stream

How to change safely:
    - Keep build() free of store access; the manager owns status updates
    - Test with a real repository before changing git arguments
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    """Outcome of producing an archive payload.

    Attributes:
        ok: Whether the payload was produced
        log: Combined output or error detail
    """

    ok: bool
    log: str = ""


def normalize_prefix(prefix: str) -> str:
    """Make a non-empty archive prefix end with a path separator."""
    if prefix and not prefix.endswith("/"):
        return prefix + "/"
    return prefix


@runtime_checkable
class ArchiveBuilder(Protocol):
    """Produces an archive file from a source location and a reference."""

    async def build(
        self,
        source: str,
        ref: str,
        output_path: Path,
        prefix: str,
    ) -> BuildResult:
        """Write the archive of ``ref`` in ``source`` to ``output_path``.

        Args:
            source: Working directory of the repository
            ref: Commit, tag or branch to archive
            output_path: Where the compressed archive is written
            prefix: Directory prefix for every entry, already normalized
        """
        ...


class GitArchiveBuilder:
    """Builds tar.gz archives with ``git archive``.

    Example:
        >>> builder = GitArchiveBuilder()
        >>> result = await builder.build("/srv/repo.git", "v1.0", Path("/tmp/a.tar.gz"), "app/")
        >>> result.ok
        True
    """

    def __init__(self, git_binary: str = "git", archive_format: str = "tar.gz") -> None:
        self.git_binary = git_binary
        self.archive_format = archive_format

    def command(self, ref: str, output_path: Path, prefix: str) -> list[str]:
        """Build the git command line for a reference."""
        return [
            self.git_binary,
            "archive",
            f"--format={self.archive_format}",
            f"--prefix={prefix}",
            f"--output={output_path}",
            "--end-of-options",
            ref,
        ]

    async def build(
        self,
        source: str,
        ref: str,
        output_path: Path,
        prefix: str,
    ) -> BuildResult:
        if ref.startswith("-"):
            return BuildResult(ok=False, log=f"invalid reference '{ref}'")

        cmd = self.command(ref, output_path, prefix)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=source,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.warning(
                "Could not start git archive",
                extra={"source": source, "ref": ref, "error": str(e)},
            )
            return BuildResult(ok=False, log=str(e))

        output, _ = await proc.communicate()
        log = output.decode("utf-8", errors="replace")
        return BuildResult(ok=proc.returncode == 0, log=log)


class BlobWriter:
    """Persists an uploaded byte stream as the archive payload."""

    def __init__(self, chunk_size: int = 64 * 1024) -> None:
        self.chunk_size = chunk_size

    async def write(self, stream: BinaryIO, output_path: Path) -> BuildResult:
        """Copy ``stream`` into ``output_path`` and close both.

        The copy runs in a worker thread so the event loop keeps serving
        requests while large uploads are written.
        """
        return await asyncio.to_thread(self._copy, stream, output_path)

    def _copy(self, stream: BinaryIO, output_path: Path) -> BuildResult:
        try:
            with open(output_path, "wb") as dst:
                shutil.copyfileobj(stream, dst, self.chunk_size)
        except OSError as e:
            return BuildResult(ok=False, log=str(e))
        finally:
            stream.close()
        return BuildResult(ok=True)
