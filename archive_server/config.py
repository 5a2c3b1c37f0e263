"""
Configuration management for the archive server.

Configuration comes from environment variables, optionally overridden by
command-line flags in main.py. The resulting ServerConfig is built once at
startup and passed explicitly to every component; nothing reads global
settings after that.

Invariants:
    - All settings have sensible defaults for local development
    - At least one of the read and write APIs must be enabled
    - Config objects are immutable once built

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names stable
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported record store backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class StorageConfig:
    """Payload storage configuration.

    Attributes:
        base_dir: Directory where archive payloads are written and served from
        suffix: File suffix appended to the archive ID
    """

    base_dir: str = "/var/lib/archives/"
    suffix: str = ".tar.gz"

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            base_dir=os.getenv("ARCHIVE_DIR", "/var/lib/archives/"),
            suffix=os.getenv("ARCHIVE_SUFFIX", ".tar.gz"),
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """Record store configuration.

    Attributes:
        backend: Which store backend to use
        path: SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StoreBackend = StoreBackend.SQLITE
    path: str = "/var/lib/archives/archives.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("ARCHIVE_STORE", "sqlite").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid ARCHIVE_STORE '{backend_str}'. Must be one of: sqlite, memory")

        return cls(
            backend=backend,
            path=os.getenv("ARCHIVE_DB_PATH", "/var/lib/archives/archives.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP API configuration.

    Attributes:
        read_bind: host:port for the API that serves archives (empty = disabled)
        write_bind: host:port for the API that creates archives (empty = disabled)
        upload_spool_bytes: Upload size kept in memory before spilling to disk
        upload_max_bytes: Largest accepted upload body
    """

    read_bind: str = ""
    write_bind: str = ""
    upload_spool_bytes: int = 1024 * 1024  # 1MB
    upload_max_bytes: int = 1024 * 1024 * 1024  # 1GB

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            read_bind=os.getenv("READ_HTTP", ""),
            write_bind=os.getenv("WRITE_HTTP", ""),
            upload_spool_bytes=int(os.getenv("UPLOAD_SPOOL_BYTES", str(1024 * 1024))),
            upload_max_bytes=int(os.getenv("UPLOAD_MAX_BYTES", str(1024 * 1024 * 1024))),
        )


@dataclass(frozen=True)
class BuilderConfig:
    """git archive configuration.

    Attributes:
        git_binary: git executable to run
        archive_format: Format passed to ``git archive --format``
    """

    git_binary: str = "git"
    archive_format: str = "tar.gz"

    @classmethod
    def from_env(cls) -> BuilderConfig:
        """Load configuration from environment variables."""
        return cls(
            git_binary=os.getenv("GIT_BINARY", "git"),
            archive_format=os.getenv("ARCHIVE_FORMAT", "tar.gz"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


def split_bind(bind: str) -> tuple[str, int]:
    """Split a host:port bind address.

    An empty host (":8080") binds all interfaces.

    Raises:
        ValueError: If the address is not host:port
    """
    host, sep, port = bind.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid bind address '{bind}', expected host:port")
    return host or "0.0.0.0", int(port)


@dataclass(frozen=True)
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Payload storage configuration
        database: Record store configuration
        http: HTTP API configuration
        builder: git archive configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    builder: BuilderConfig = field(default_factory=BuilderConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            database=DatabaseConfig.from_env(),
            http=HttpConfig.from_env(),
            builder=BuilderConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.http.read_bind and not self.http.write_bind:
            raise ValueError("You need to specify at least one of READ_HTTP and WRITE_HTTP")

        for bind in (self.http.read_bind, self.http.write_bind):
            if bind:
                split_bind(bind)

        if not self.storage.base_dir:
            raise ValueError("ARCHIVE_DIR is required")

        if self.database.backend == StoreBackend.SQLITE and not self.database.path:
            raise ValueError("ARCHIVE_DB_PATH is required when ARCHIVE_STORE=sqlite")

        if self.database.backend == StoreBackend.MEMORY:
            logger.warning("Using the in-memory store; archive records are lost on restart")

        if not os.path.exists(self.storage.base_dir):
            logger.warning(
                f"Archive directory does not exist: {self.storage.base_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "archive_dir": self.storage.base_dir,
                "store_backend": self.database.backend.value,
                "db_path": self.database.path
                if self.database.backend == StoreBackend.SQLITE
                else None,
                "read_http": self.http.read_bind or None,
                "write_http": self.http.write_bind or None,
                "git_binary": self.builder.git_binary,
                "log_level": self.observability.log_level,
            },
        )
