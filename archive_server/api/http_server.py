"""
HTTP server implementation for the archive server.

Two independent aiohttp applications share one ArchiveManager:
- The write API creates archives and reports their status
- The read API serves a READY archive once and then destroys it

They are bound to separate addresses so the write API can stay private
while the read API is exposed to the clients that download archives.

Invariants:
    - Destroyed and unknown IDs both answer 404
    - A READY archive is destroyed before its bytes are streamed, unless keep is set
    - Store outages answer 500 and are never reported as 404
    - Payload paths and store internals stay out of JSON bodies
    - File I/O runs in worker threads, off the event loop

How to change safely:
    - Keep response bodies stable; deploy scripts match on them
    - Add endpoints rather than changing existing parameters
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import Callable

from aiohttp import web

from ..archive.manager import ArchiveManager
from ..archive.models import ArchiveStatus
from ..config import HttpConfig, split_bind
from ..errors import ArchiveError, ArchiveNotFoundError, ArchiveRemovalError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

NOT_FOUND_TEXT = "archive not found"
STORE_ERROR_TEXT = "archive operation failed"


def _error_middleware() -> Callable:
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    return error_middleware


def create_write_app(
    manager: ArchiveManager,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create the application that creates archives.

    Args:
        manager: Archive lifecycle manager
        config: HTTP configuration (upload limits)

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application(middlewares=[_error_middleware()])

    app.router.add_post("/", lambda r: handle_create(r, manager))
    app.router.add_post("/upload", lambda r: handle_upload(r, manager, config))
    app.router.add_get("/status", lambda r: handle_status(r, manager))
    app.router.add_get("/health", lambda r: handle_health(r, manager))

    return app


def create_read_app(manager: ArchiveManager) -> web.Application:
    """Create the application that serves archives.

    Args:
        manager: Archive lifecycle manager

    Returns:
        aiohttp Application instance
    """
    app = web.Application(middlewares=[_error_middleware()])

    app.router.add_get("/", lambda r: handle_read(r, manager))
    app.router.add_get("/health", lambda r: handle_health(r, manager))

    return app


def _store_error(e: ArchiveError) -> web.Response:
    logger.error(f"Archive operation failed: {e.message}", extra={"error_code": e.code})
    return web.json_response({"error": STORE_ERROR_TEXT, "error_code": e.code}, status=500)


async def handle_create(request: web.Request, manager: ArchiveManager) -> web.Response:
    """Handle POST / - Create an archive from a git reference."""
    form = await request.post()
    path = form.get("path", "")
    refid = form.get("refid", "")
    prefix = form.get("prefix", "")

    if not path or not refid:
        return web.Response(text="path and refid are required", status=400)

    try:
        record = await manager.create_from_source(str(path), str(refid), str(prefix))
    except ArchiveError as e:
        return _store_error(e)

    return web.json_response({"id": record.id, "status": str(record.status)})


async def handle_upload(
    request: web.Request,
    manager: ArchiveManager,
    config: HttpConfig,
) -> web.Response:
    """Handle POST /upload?name=<name> - Create an archive from the request body.

    The body is spooled before the handler returns, since the population
    task outlives the request.
    """
    name = request.query.get("name", "")
    if not name:
        return web.Response(text="name is required", status=400)

    spool = tempfile.SpooledTemporaryFile(max_size=config.upload_spool_bytes)
    size = 0
    try:
        async for chunk in request.content.iter_chunked(CHUNK_SIZE):
            size += len(chunk)
            if size > config.upload_max_bytes:
                raise web.HTTPRequestEntityTooLarge(
                    max_size=config.upload_max_bytes,
                    actual_size=size,
                )
            await asyncio.to_thread(spool.write, chunk)
    except BaseException:
        spool.close()
        raise
    spool.seek(0)

    try:
        record = await manager.create_from_upload(spool, name)
    except ArchiveError as e:
        return _store_error(e)

    return web.json_response({"id": record.id, "status": str(record.status)})


async def handle_status(request: web.Request, manager: ArchiveManager) -> web.Response:
    """Handle GET /status?id=<id> - Report an archive's record."""
    archive_id = request.query.get("id", "")
    if not archive_id:
        return web.Response(text="missing archive id", status=400)

    try:
        record = await manager.get(archive_id)
    except ArchiveNotFoundError as e:
        return web.json_response({"error": e.message, "error_code": e.code}, status=404)
    except ArchiveError as e:
        return _store_error(e)

    body = record.to_dict()
    del body["path"]
    return web.json_response(body)


async def handle_read(request: web.Request, manager: ArchiveManager) -> web.StreamResponse:
    """Handle GET /?id=<id>[&keep=1] - Serve an archive once.

    Unless keep is set, the archive is destroyed after its payload has been
    opened and before the bytes are streamed. A second reader racing for
    the same archive gets 404 (or a failed open) instead of a copy.
    """
    archive_id = request.query.get("id", "")
    if not archive_id:
        return web.Response(text="missing archive id", status=400)
    keep = request.query.get("keep", "").lower() not in ("", "0", "false")

    try:
        record = await manager.get(archive_id)
    except ArchiveNotFoundError:
        return web.Response(text=NOT_FOUND_TEXT, status=404)
    except ArchiveError as e:
        return web.Response(text=e.message, status=500)

    if record.status == ArchiveStatus.BUILDING:
        return web.Response(text="BUILDING")
    if record.status == ArchiveStatus.ERROR:
        return web.Response(text=record.log, status=500)
    if record.status == ArchiveStatus.DESTROYED:
        return web.Response(text=NOT_FOUND_TEXT, status=404)
    if record.status != ArchiveStatus.READY:
        return web.Response(text="unknown error", status=500)

    try:
        payload = await asyncio.to_thread(open, record.path, "rb")
    except OSError as e:
        return web.Response(text=str(e), status=500)

    try:
        if not keep:
            try:
                await manager.destroy(archive_id)
            except ArchiveRemovalError as e:
                logger.warning(e.message, extra={"archive_id": archive_id})
            except ArchiveNotFoundError:
                return web.Response(text=NOT_FOUND_TEXT, status=404)
            except ArchiveError as e:
                return web.Response(text=e.message, status=500)

        response = web.StreamResponse(
            headers={
                "Content-Type": "application/x-gzip",
                "Content-Disposition": f'attachment; filename="{record.path.name}"',
            },
        )
        response.content_length = os.fstat(payload.fileno()).st_size
        await response.prepare(request)
        while True:
            chunk = await asyncio.to_thread(payload.read, CHUNK_SIZE)
            if not chunk:
                break
            await response.write(chunk)
        await response.write_eof()
        return response
    finally:
        payload.close()


async def handle_health(request: web.Request, manager: ArchiveManager) -> web.Response:
    """Handle GET /health - Health check."""
    try:
        await manager.store.ping()
    except ArchiveError as e:
        return web.json_response({"healthy": False, "error": e.message}, status=503)
    return web.json_response({"healthy": True, "pending_builds": manager.pending})


async def start_site(app: web.Application, bind: str) -> web.AppRunner:
    """Start serving ``app`` on a host:port address.

    Returns:
        The runner; call ``cleanup()`` on it to stop serving
    """
    host, port = split_bind(bind)
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")
    return runner
