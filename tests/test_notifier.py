"""Tests for the stream notifier with mocked HTTP."""

import asyncio

import httpx
import pytest
import respx
from httpx import Response

from ssewire.client.notifier import StreamNotifier
from ssewire.client.parser import Event
from ssewire.config import StreamConfig
from ssewire.errors import (
    NilChannelError,
    RequestBuildError,
    StreamReadError,
    TransportError,
)

URL = "http://events.test/stream"


class ScriptedStream(httpx.AsyncByteStream):
    """Yields fixed chunks, then optionally fails or hangs."""

    def __init__(self, chunks, error=None, hang=False):
        self.chunks = chunks
        self.error = error
        self.hang = hang
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


def _mock_client(stream, status=200):
    def handler(request):
        return httpx.Response(status, stream=stream)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _drain(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class TestPreconditions:
    @pytest.mark.asyncio
    @respx.mock
    async def test_nil_channel_performs_no_request(self):
        route = respx.get(URL).mock(return_value=Response(200, content=b""))
        async with StreamNotifier() as notifier:
            with pytest.raises(NilChannelError):
                await notifier.notify(URL, None)
        assert not route.called

    @pytest.mark.asyncio
    async def test_request_factory_failure(self):
        def broken_factory(method, uri):
            raise ValueError("bad uri")

        async with StreamNotifier(request_factory=broken_factory) as notifier:
            with pytest.raises(RequestBuildError) as exc_info:
                await notifier.notify(URL, asyncio.Queue())
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert exc_info.value.uri == URL

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_failure(self):
        respx.get(URL).mock(side_effect=httpx.ConnectError("connection refused"))
        async with StreamNotifier() as notifier:
            with pytest.raises(TransportError) as exc_info:
                await notifier.notify(URL, asyncio.Queue())
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


class TestStreaming:
    @pytest.mark.asyncio
    @respx.mock
    async def test_events_forwarded_and_partial_dropped(self):
        body = b"event: greet\ndata: hello\nid: 1\n\ndata: second\n"
        respx.get(URL).mock(return_value=Response(200, content=body))
        queue = asyncio.Queue()

        async with StreamNotifier() as notifier:
            assert await notifier.notify(URL, queue) is None

        assert _drain(queue) == [
            Event(source=URL, type="greet", id="1", data=b"hello"),
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test_accept_header_forced(self):
        route = respx.get(URL).mock(return_value=Response(200, content=b""))

        def factory(method, uri):
            return httpx.Request(method, uri, headers={"Accept": "application/json", "X-Token": "t"})

        async with StreamNotifier(request_factory=factory) as notifier:
            await notifier.notify(URL, asyncio.Queue())

        sent = route.calls.last.request
        assert sent.method == "GET"
        assert sent.headers["accept"] == "text/event-stream"
        assert sent.headers["x-token"] == "t"

    @pytest.mark.asyncio
    async def test_frames_split_across_chunks(self):
        stream = ScriptedStream([b"data: a", b"\r\ndata: b\r", b"\n\r\n: ping\n\n", b"event: x\n\n"])
        notifier = StreamNotifier(http_client=_mock_client(stream))
        queue = asyncio.Queue()
        await notifier.notify(URL, queue)

        events = _drain(queue)
        assert [(e.type, e.data) for e in events] == [("", b"a\nb"), ("x", b"")]
        assert stream.closed

    @pytest.mark.asyncio
    async def test_read_error_mid_stream(self):
        stream = ScriptedStream([b"data: ok\n\n"], error=httpx.ReadError("reset"))
        notifier = StreamNotifier(http_client=_mock_client(stream))
        queue = asyncio.Queue()

        with pytest.raises(StreamReadError) as exc_info:
            await notifier.notify(URL, queue)

        assert isinstance(exc_info.value.__cause__, httpx.ReadError)
        assert [e.data for e in _drain(queue)] == [b"ok"]
        assert stream.closed

    @pytest.mark.asyncio
    async def test_non_success_status_still_read(self):
        stream = ScriptedStream([b"data: oops\n\n"])
        notifier = StreamNotifier(http_client=_mock_client(stream, status=503))
        queue = asyncio.Queue()
        await notifier.notify(URL, queue)
        assert [e.text for e in _drain(queue)] == ["oops"]


class TestFlowControl:
    @pytest.mark.asyncio
    async def test_cancel_event_stops_cleanly(self):
        stream = ScriptedStream([b"data: first\n\n"], hang=True)
        notifier = StreamNotifier(http_client=_mock_client(stream))
        queue = asyncio.Queue()
        cancel = asyncio.Event()

        task = asyncio.create_task(notifier.notify(URL, queue, cancel=cancel))
        event = await asyncio.wait_for(queue.get(), 2.0)
        assert event.text == "first"

        cancel.set()
        assert await asyncio.wait_for(task, 2.0) is None
        assert stream.closed

    @pytest.mark.asyncio
    async def test_cancel_propagates_read_errors(self):
        stream = ScriptedStream([], error=httpx.ReadError("reset"))
        notifier = StreamNotifier(http_client=_mock_client(stream))
        with pytest.raises(StreamReadError):
            await notifier.notify(URL, asyncio.Queue(), cancel=asyncio.Event())

    @pytest.mark.asyncio
    async def test_slow_consumer_blocks_reader(self):
        stream = ScriptedStream([b"data: 1\n\ndata: 2\n\ndata: 3\n\n"])
        notifier = StreamNotifier(http_client=_mock_client(stream))
        queue = asyncio.Queue(maxsize=1)

        task = asyncio.create_task(notifier.notify(URL, queue))
        await asyncio.sleep(0.05)
        assert queue.full()
        assert not task.done()

        received = [await asyncio.wait_for(queue.get(), 2.0) for _ in range(3)]
        await asyncio.wait_for(task, 2.0)
        assert [e.data for e in received] == [b"1", b"2", b"3"]


class TestClientOwnership:
    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        notifier = StreamNotifier(StreamConfig(connect_timeout_seconds=1.0))
        await notifier.aclose()
        assert notifier.http_client.is_closed

    @pytest.mark.asyncio
    async def test_supplied_client_left_open(self):
        client = httpx.AsyncClient()
        notifier = StreamNotifier(http_client=client)
        await notifier.aclose()
        assert not client.is_closed
        await client.aclose()
