"""Error taxonomy shared by the client and server halves."""

from __future__ import annotations

from typing import Any


class SSEError(Exception):
    """Base class for all ssewire errors."""


class NilChannelError(SSEError):
    """Raised when notify() is called without an output queue."""

    def __init__(self) -> None:
        super().__init__("nil channel given")


class RequestBuildError(SSEError):
    """The request factory failed or produced an unusable request."""

    def __init__(self, uri: str, reason: str) -> None:
        self.uri = uri
        super().__init__(f"error getting sse request for {uri}: {reason}")


class TransportError(SSEError):
    """The HTTP round-trip failed before a response was received."""

    def __init__(self, uri: str, reason: str) -> None:
        self.uri = uri
        super().__init__(f"error performing sse request for {uri}: {reason}")


class StreamReadError(SSEError):
    """Reading the response body failed mid-stream."""

    def __init__(self, uri: str, reason: str) -> None:
        self.uri = uri
        super().__init__(f"error reading sse stream from {uri}: {reason}")


class StreamingUnsupportedError(SSEError):
    """The response cannot be flushed incrementally.

    ``response`` holds the 500 response already written to the peer; a
    handler should return it instead of touching the original response.
    It is None when the original response was already prepared, since its
    headers are gone and nothing more was written.
    """

    def __init__(self, response: Any | None = None) -> None:
        self.response = response
        super().__init__("streaming unsupported")


class ConnectionClosedError(SSEError):
    """A message was sent on a connection whose dispatch task has exited."""

    def __init__(self) -> None:
        super().__init__("connection already closed")
