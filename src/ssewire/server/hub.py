"""Connection hub: tracks live event-stream connections and fans messages out."""

from __future__ import annotations

import asyncio

import structlog

from ssewire.errors import ConnectionClosedError
from .connection import Connection
from .message import Message

log = structlog.get_logger()


class ConnectionHub:
    """Manages open connections and broadcasts messages to all of them."""

    def __init__(self) -> None:
        self._connections: set[Connection] = set()
        # Used as the request context of every upgrade; set on server shutdown.
        self.shutdown = asyncio.Event()

    def add(self, conn: Connection) -> None:
        self._connections.add(conn)
        log.debug("sse_client_connected", conn=conn.name, total=len(self._connections))

    def remove(self, conn: Connection) -> None:
        self._connections.discard(conn)
        log.debug("sse_client_disconnected", conn=conn.name, total=len(self._connections))

    async def broadcast(self, payload: str, *, id: str = "", type: str = "") -> int:
        """Enqueue a message on every open connection without waiting on any of them.

        A connection whose queue is full misses this message. Returns how many
        connections took it. Raises ValueError for a malformed id or type.
        """
        message = Message(payload=payload, id=id, type=type)
        delivered = 0
        skipped = 0
        dead: list[Connection] = []

        for conn in list(self._connections):
            try:
                if conn.offer(message):
                    delivered += 1
                else:
                    skipped += 1
                    log.warning("sse_broadcast_queue_full", conn=conn.name, pending=conn.pending)
            except ConnectionClosedError:
                dead.append(conn)

        for conn in dead:
            self._connections.discard(conn)

        log.debug(
            "sse_broadcast",
            delivered=delivered,
            skipped=skipped,
            dropped=len(dead),
            event_type=type,
        )
        return delivered

    async def close_all(self) -> None:
        """Stop every connection and wait for their dispatch tasks to exit."""
        self.shutdown.set()
        conns = list(self._connections)
        for conn in conns:
            conn.close()
        await asyncio.gather(*(conn.wait_closed() for conn in conns))
        self._connections.clear()
        log.info("sse_hub_closed", connections=len(conns))

    @property
    def connection_count(self) -> int:
        return len(self._connections)
