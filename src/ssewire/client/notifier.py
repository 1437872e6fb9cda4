"""Stream notifier: read one SSE endpoint and forward its events to a queue.

Owns a single GET request/response cycle. Events are handed to the caller's
``asyncio.Queue`` with ``await put()``, so a bounded queue throttles reading
of the response body.
"""

from __future__ import annotations

import asyncio
from typing import Callable

import httpx
import structlog

from ssewire.client.lines import LineSplitter
from ssewire.client.parser import Event, EventStreamParser
from ssewire.config import StreamConfig
from ssewire.errors import (
    NilChannelError,
    RequestBuildError,
    StreamReadError,
    TransportError,
)
from ssewire.protocol import CONTENT_TYPE

log = structlog.get_logger()

RequestFactory = Callable[[str, str], httpx.Request]


class StreamNotifier:
    """Reads event streams with an httpx client.

    Args:
        config: Stream configuration. Defaults to StreamConfig().
        http_client: Optional pre-configured client. If not provided, one is
            created from the config and closed by ``aclose()``.
        request_factory: Optional ``(method, uri) -> httpx.Request`` used to
            customise requests. The Accept header is always overwritten.
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        request_factory: RequestFactory | None = None,
    ) -> None:
        if config is None:
            config = StreamConfig()
        self.config = config

        self._owns_client = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    config.connect_timeout_seconds,
                    read=config.read_timeout_seconds,
                ),
                http2=config.http2,
                follow_redirects=True,
            )
        self.http_client = http_client
        self.request_factory = request_factory or http_client.build_request

    async def __aenter__(self) -> StreamNotifier:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    def _make_request(self, uri: str) -> httpx.Request:
        try:
            request = self.request_factory("GET", uri)
        except Exception as exc:
            raise RequestBuildError(uri, str(exc)) from exc
        request.headers["Accept"] = CONTENT_TYPE
        return request

    async def notify(
        self,
        uri: str,
        output: asyncio.Queue[Event] | None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Stream events from ``uri`` into ``output`` until the stream ends.

        Blocks for the lifetime of the stream, so run it in its own task.
        Returns normally on a clean end of stream or when ``cancel`` is set.

        Raises:
            NilChannelError: ``output`` is None. Nothing is sent.
            RequestBuildError: The request could not be built.
            TransportError: The request failed before a response arrived.
            StreamReadError: Reading the body failed mid-stream.
        """
        if output is None:
            raise NilChannelError()

        request = self._make_request(uri)

        try:
            response = await self.http_client.send(request, stream=True)
        except httpx.HTTPError as exc:
            log.error("sse_request_failed", uri=uri, error=str(exc))
            raise TransportError(uri, str(exc)) from exc

        try:
            log.info("sse_stream_opened", uri=uri, status=response.status_code)
            if not response.is_success:
                log.warning("sse_unexpected_status", uri=uri, status=response.status_code)

            if cancel is None:
                await self._pump(uri, response, output)
            else:
                await self._pump_until_cancelled(uri, response, output, cancel)
        finally:
            await response.aclose()

    async def _pump_until_cancelled(
        self,
        uri: str,
        response: httpx.Response,
        output: asyncio.Queue[Event],
        cancel: asyncio.Event,
    ) -> None:
        pump = asyncio.ensure_future(self._pump(uri, response, output))
        stop = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {pump, stop}, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (pump, stop):
                if not task.done():
                    task.cancel()
            await asyncio.gather(pump, stop, return_exceptions=True)

        if pump in done:
            pump.result()
        else:
            log.info("sse_stream_cancelled", uri=uri)

    async def _pump(
        self,
        uri: str,
        response: httpx.Response,
        output: asyncio.Queue[Event],
    ) -> None:
        """Feed the response body through the parser into ``output``."""
        splitter = LineSplitter()
        parser = EventStreamParser(source=uri)
        delivered = 0

        try:
            async for chunk in response.aiter_bytes():
                for line in splitter.feed(chunk):
                    event = parser.feed(line)
                    if event is not None:
                        await output.put(event)
                        delivered += 1
            tail = splitter.flush()
            if tail is not None:
                parser.feed(tail)
        except (httpx.HTTPError, httpx.StreamError) as exc:
            log.error("sse_stream_read_failed", uri=uri, error=str(exc), events=delivered)
            raise StreamReadError(uri, str(exc)) from exc

        if parser.pending:
            # No blank line after the last fields: the event is not dispatched.
            log.debug("sse_partial_event_dropped", uri=uri)

        log.info("sse_stream_complete", uri=uri, events=delivered)
