"""Upgrade an aiohttp request into a server-sent event stream."""

from __future__ import annotations

import asyncio
import itertools

import structlog
from aiohttp import web

from ssewire.errors import StreamingUnsupportedError
from ssewire.protocol import STREAM_HEADERS
from .connection import Connection
from .message import format_retry

log = structlog.get_logger()

_conn_ids = itertools.count(1)


def supports_flush(response: web.StreamResponse) -> bool:
    """Whether ``response`` can be written to incrementally.

    ``web.Response`` buffers its whole body.
    """
    return isinstance(response, web.StreamResponse) and not isinstance(response, web.Response)


class Upgrader:
    """Takes over HTTP responses and turns them into event-stream connections.

    Args:
        retry_ms: Reconnection delay hint sent before the first event; 0 skips it.
        queue_size: Per-connection message queue bound; 0 means unbounded.
        disconnect_poll_seconds: How often each connection checks whether the
            peer has gone away.
    """

    def __init__(
        self,
        retry_ms: int = 0,
        queue_size: int = 0,
        disconnect_poll_seconds: float = 1.0,
    ) -> None:
        self.retry_ms = retry_ms
        self.queue_size = queue_size
        self.disconnect_poll_seconds = disconnect_poll_seconds

    async def upgrade(
        self,
        request: web.Request,
        response: web.StreamResponse | None = None,
        *,
        context: asyncio.Event | None = None,
    ) -> Connection:
        """Prepare ``response`` as an event stream and start its dispatch task.

        If the response cannot be flushed incrementally a 500 response is sent
        to the peer instead and StreamingUnsupportedError is raised; the
        handler should return ``exc.response`` and not touch ``response`` again.
        A response that is already prepared has sent its headers, so nothing is
        written and ``exc.response`` is None.
        """
        if response is None:
            response = web.StreamResponse()

        if response.prepared:
            log.error(
                "sse_response_already_prepared",
                path=request.path,
                response_type=type(response).__name__,
            )
            raise StreamingUnsupportedError()

        if not supports_flush(response):
            log.error(
                "sse_streaming_unsupported",
                path=request.path,
                response_type=type(response).__name__,
            )
            error = web.Response(status=500, text="Streaming unsupported!")
            await error.prepare(request)
            await error.write_eof()
            raise StreamingUnsupportedError(error)

        for name, value in STREAM_HEADERS.items():
            response.headers[name] = value
        await response.prepare(request)

        if self.retry_ms > 0:
            await response.write(format_retry(self.retry_ms))

        def peer_gone() -> bool:
            transport = request.transport
            return transport is None or transport.is_closing()

        conn = Connection(
            response,
            context=context,
            peer_gone=peer_gone,
            poll_interval=self.disconnect_poll_seconds,
            queue_size=self.queue_size,
            name=f"{request.remote}#{next(_conn_ids)}",
        )
        conn.start()
        log.info("sse_connection_opened", conn=conn.name, path=request.path, retry_ms=self.retry_ms)
        return conn
