"""
Archive Server - Main entry point.

This module starts the archive server with its components:
- Record store (SQLite or in-memory)
- Archive lifecycle manager
- Write API (create archives) and/or read API (serve archives)

Usage:
    archive-server --write-http 127.0.0.1:3031 --read-http 0.0.0.0:3032

Configuration comes from environment variables (see config.py); the
command-line flags override them.

Invariants:
    - At least one API is started
    - Shutdown stops accepting requests before draining archive builds
    - The store is closed last

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
from aiohttp import web

from .api import create_read_app, create_write_app, start_site
from .archive import ArchiveManager, BlobWriter, GitArchiveBuilder
from .config import (
    BuilderConfig,
    DatabaseConfig,
    HttpConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
)
from .store import ArchiveStore, create_store

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Archive server orchestrator.

    Manages the lifecycle of all server components:
    - Record store
    - Archive manager and its population tasks
    - HTTP runners for the read and write APIs

    Attributes:
        config: Server configuration
        store: Archive record store
        manager: Archive lifecycle manager

    Example:
        >>> server = Server(config)
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: ArchiveStore | None = None
        self.manager: ArchiveManager | None = None
        self._runners: list[web.AppRunner] = []

    async def start(self) -> None:
        """Start the server and wait until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting archive server")
        self.config.log_config()

        try:
            Path(self.config.storage.base_dir).mkdir(parents=True, exist_ok=True)

            self.store = create_store(self.config)
            await self.store.initialize()

            self.manager = ArchiveManager(
                store=self.store,
                storage=self.config.storage,
                builder=GitArchiveBuilder(
                    git_binary=self.config.builder.git_binary,
                    archive_format=self.config.builder.archive_format,
                ),
                blob_writer=BlobWriter(),
            )

            if self.config.http.write_bind:
                app = create_write_app(self.manager, self.config.http)
                self._runners.append(await start_site(app, self.config.http.write_bind))

            if self.config.http.read_bind:
                app = create_read_app(self.manager)
                self._runners.append(await start_site(app, self.config.http.read_bind))

            self._running = True
            logger.info("Archive server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._shutdown_components()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping archive server")
        await self._shutdown_components()
        self._running = False
        logger.info("Archive server stopped")

    async def _shutdown_components(self) -> None:
        for runner in self._runners:
            await runner.cleanup()
        self._runners.clear()

        if self.manager:
            await self.manager.drain()

        if self.store:
            await self.store.close()

    @property
    def is_running(self) -> bool:
        """Whether the server has finished starting and not yet stopped."""
        return self._running

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="archive-server",
        description="Build git archives in the background and serve each one once.",
    )
    parser.add_argument("--dir", help="Base directory, where the server creates and serves archives")
    parser.add_argument("--db", help="Path of the SQLite database holding archive records")
    parser.add_argument(
        "--read-http",
        help="Address to bind the API that serves archives. Omit to not start this API.",
    )
    parser.add_argument(
        "--write-http",
        help="Address to bind the API that creates archives. Omit to not start this API.",
    )
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    return parser


def load_config(argv: list[str] | None = None) -> ServerConfig:
    """Load configuration from the environment, then apply command-line overrides.

    Raises:
        ValueError: If the resulting configuration is invalid
    """
    args = build_parser().parse_args(argv)
    storage = StorageConfig.from_env()
    database = DatabaseConfig.from_env()
    http = HttpConfig.from_env()
    observability = ObservabilityConfig.from_env()

    if args.dir:
        storage = dataclasses.replace(storage, base_dir=args.dir)
    if args.db:
        database = dataclasses.replace(database, path=args.db)
    if args.read_http is not None:
        http = dataclasses.replace(http, read_bind=args.read_http)
    if args.write_http is not None:
        http = dataclasses.replace(http, write_bind=args.write_http)
    if args.log_level:
        observability = dataclasses.replace(observability, log_level=args.log_level)

    config = ServerConfig(
        storage=storage,
        database=database,
        http=http,
        builder=BuilderConfig.from_env(),
        observability=observability,
    )
    config.validate()
    return config


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    try:
        config = load_config(argv)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
