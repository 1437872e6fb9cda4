"""aiohttp application factory and routes for the event-stream server."""

from __future__ import annotations

import asyncio
import json

import structlog
from aiohttp import web

from ssewire.config import StreamConfig
from ssewire.errors import StreamingUnsupportedError
from .hub import ConnectionHub
from .upgrader import Upgrader

log = structlog.get_logger()


async def create_app(
    config: StreamConfig | None = None,
    hub: ConnectionHub | None = None,
) -> web.Application:
    """Create and configure the aiohttp application.

    Args:
        config: Stream configuration. Defaults to StreamConfig().
        hub: Optional connection hub (for testing or for publishing from
            the embedding program). A fresh one is created if not provided.
    """
    if config is None:
        config = StreamConfig()

    app = web.Application()
    app["config"] = config
    app["hub"] = hub if hub is not None else ConnectionHub()
    app["upgrader"] = Upgrader(
        retry_ms=config.retry_ms,
        queue_size=config.queue_size,
        disconnect_poll_seconds=config.disconnect_poll_seconds,
    )

    app.router.add_get("/events", handle_events)
    app.router.add_post("/publish", handle_publish)
    app.router.add_get("/health", handle_health)

    app.on_startup.append(on_startup)
    app.on_shutdown.append(on_shutdown)

    return app


async def on_startup(app: web.Application) -> None:
    log.info("server_started", config=app["config"].model_dump())


async def on_shutdown(app: web.Application) -> None:
    """Close open streams so their handlers return before the server stops."""
    hub: ConnectionHub = app["hub"]
    await hub.close_all()
    log.info("server_stopped")


async def handle_events(request: web.Request) -> web.StreamResponse:
    """GET /events — long-lived event stream."""
    hub: ConnectionHub = request.app["hub"]
    upgrader: Upgrader = request.app["upgrader"]

    try:
        conn = await upgrader.upgrade(request, context=hub.shutdown)
    except StreamingUnsupportedError as exc:
        return exc.response

    hub.add(conn)
    try:
        await conn.wait_closed()
    finally:
        conn.close()
        hub.remove(conn)
    return conn.response


async def handle_publish(request: web.Request) -> web.Response:
    """POST /publish — broadcast one message to every open stream.

    Body: ``{"data": ..., "event": "...", "id": "..."}``. Non-string data is
    sent as JSON.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError) as exc:
        return web.json_response(
            {"error": {"type": "invalid_request", "message": str(exc)}},
            status=400,
        )

    if not isinstance(body, dict) or "data" not in body:
        return web.json_response(
            {"error": {"type": "invalid_request", "message": "missing 'data'"}},
            status=400,
        )

    data = body["data"]
    payload = data if isinstance(data, str) else json.dumps(data)

    hub: ConnectionHub = request.app["hub"]
    try:
        delivered = await hub.broadcast(
            payload,
            id=str(body.get("id") or ""),
            type=str(body.get("event") or ""),
        )
    except ValueError as exc:
        return web.json_response(
            {"error": {"type": "invalid_request", "message": str(exc)}},
            status=400,
        )
    return web.json_response({"status": "ok", "delivered": delivered})


async def handle_health(request: web.Request) -> web.Response:
    """GET /health — health check endpoint."""
    hub: ConnectionHub = request.app["hub"]
    return web.json_response({
        "status": "ok",
        "connections": hub.connection_count,
    })


def run_server(config: StreamConfig | None = None) -> None:
    """Run the event-stream server (blocking)."""
    if config is None:
        config = StreamConfig()

    async def _run() -> None:
        app = await create_app(config)

        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, host=config.host, port=config.port)
        await site.start()
        log.info("server_listening", host=config.host, port=config.port)

        # Run forever
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    asyncio.run(_run())
