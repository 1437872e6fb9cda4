"""Wire-level constants for the text/event-stream media type."""

from __future__ import annotations

CONTENT_TYPE = "text/event-stream"

KEY_ID = "id"
KEY_EVENT = "event"
KEY_DATA = "data"
KEY_RETRY = "retry"

# Headers sent when a response is upgraded to an event stream.
STREAM_HEADERS: dict[str, str] = {
    "Content-Type": CONTENT_TYPE,
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}
