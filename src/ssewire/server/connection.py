"""Server-side event stream connection and its dispatch task.

The dispatch task is the only writer of the response: producers enqueue
``Message`` values, the task serializes and writes them one frame per write
until it is closed, the request context ends, or the peer goes away.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import structlog
from aiohttp import ClientConnectionError

from ssewire.errors import ConnectionClosedError
from .message import Message

log = structlog.get_logger()

# Raised by aiohttp when writing to a transport the peer has dropped.
_WRITE_ERRORS = (ConnectionResetError, ClientConnectionError, BrokenPipeError)


class Connection:
    """A long-lived push channel bound 1:1 to one streaming response.

    Args:
        response: Anything with an async ``write(bytes)``; normally a prepared
            ``aiohttp.web.StreamResponse``.
        context: Optional event that is set when the owning request is done
            (e.g. the server is shutting down).
        peer_gone: Optional predicate reporting that the peer disconnected.
            Polled every ``poll_interval`` seconds.
        queue_size: Bound of the message queue; 0 means unbounded.
    """

    def __init__(
        self,
        response: Any,
        *,
        context: asyncio.Event | None = None,
        peer_gone: Callable[[], bool] | None = None,
        poll_interval: float = 1.0,
        queue_size: int = 0,
        name: str = "",
    ) -> None:
        self.response = response
        self.name = name
        self._context = context
        self._peer_gone = peer_gone
        self._poll_interval = poll_interval
        self._queue: asyncio.Queue[Message] = asyncio.Queue(maxsize=queue_size)
        self._shutdown = asyncio.Event()
        self._closed = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return not self._closed.is_set()

    @property
    def pending(self) -> int:
        """Messages enqueued but not yet written."""
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the dispatch task. Called once by the upgrader."""
        if self._task is not None:
            raise RuntimeError("dispatch task already started")
        self._task = asyncio.create_task(self._dispatch())

    async def send(self, payload: str, *, id: str = "", type: str = "") -> None:
        """Enqueue a message for delivery."""
        await self.send_message(Message(payload=payload, id=id, type=type))

    async def send_message(self, message: Message) -> None:
        if not self.is_open:
            raise ConnectionClosedError()
        if not self._queue.full():
            self._queue.put_nowait(message)
            return

        # Bounded queue is full: wait for room, but not past the task's exit.
        put = asyncio.ensure_future(self._queue.put(message))
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            if not put.done():
                put.cancel()
        if not put.done() or put.cancelled():
            raise ConnectionClosedError()

    def offer(self, message: Message) -> bool:
        """Enqueue without waiting. Returns False when a bounded queue is full."""
        if not self.is_open:
            raise ConnectionClosedError()
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        """Ask the dispatch task to stop. Safe to call repeatedly or after it exited."""
        self._shutdown.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def _wait_stop(self) -> str:
        """Resolve with the reason once any stop source fires."""
        waiters: dict[asyncio.Future[Any], str] = {
            asyncio.ensure_future(self._shutdown.wait()): "shutdown",
        }
        if self._context is not None:
            waiters[asyncio.ensure_future(self._context.wait())] = "context_done"
        if self._peer_gone is not None:
            waiters[asyncio.ensure_future(self._watch_peer())] = "peer_disconnected"

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return waiters[next(iter(done))]

    async def _watch_peer(self) -> None:
        assert self._peer_gone is not None
        while not self._peer_gone():
            await asyncio.sleep(self._poll_interval)

    async def _dispatch(self) -> None:
        stop = asyncio.ensure_future(self._wait_stop())
        reason = "unknown"
        written = 0
        write: asyncio.Future[None] | None = None
        try:
            while True:
                get = asyncio.ensure_future(self._queue.get())
                await asyncio.wait({get, stop}, return_when=asyncio.FIRST_COMPLETED)
                if stop.done():
                    get.cancel()
                    reason = stop.result()
                    break

                message = get.result()
                # aiohttp writes through to the transport, so each frame is flushed here.
                write = asyncio.ensure_future(self.response.write(message.to_bytes()))
                await asyncio.wait({write, stop}, return_when=asyncio.FIRST_COMPLETED)
                if not write.done():
                    # Stalled write: stop wins, the frame is abandoned.
                    write.cancel()
                    await asyncio.gather(write, return_exceptions=True)
                    reason = stop.result()
                    break
                try:
                    write.result()
                except _WRITE_ERRORS as exc:
                    reason = "write_failed"
                    log.warning("sse_write_failed", conn=self.name, error=str(exc))
                    break
                written += 1
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        finally:
            stop.cancel()
            if write is not None and not write.done():
                write.cancel()
            self._closed.set()
            log.info(
                "sse_connection_closed",
                conn=self.name,
                reason=reason,
                written=written,
                dropped=self._queue.qsize(),
            )
