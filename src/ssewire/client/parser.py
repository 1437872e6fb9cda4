"""Line-oriented text/event-stream parser.

Turns lines (terminators already removed) into ``Event`` values following
the event-stream interpretation rules: blank lines dispatch, ``:`` lines are
comments, ``data`` fields accumulate joined by newlines.
"""

from __future__ import annotations

from dataclasses import dataclass

from ssewire.protocol import KEY_DATA, KEY_EVENT, KEY_ID


@dataclass(frozen=True)
class Event:
    """A single event received from a stream."""

    source: str = ""
    type: str = ""
    id: str = ""
    data: bytes = b""

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


class EventStreamParser:
    """Stateful per-stream decoder; one instance per stream."""

    def __init__(self, source: str = "") -> None:
        self.source = source
        self._seen_field = False
        self._type = ""
        self._id = ""
        self._data: bytearray | None = None

    @property
    def pending(self) -> bool:
        """Whether fields have been seen that no blank line has dispatched yet."""
        return self._seen_field

    def feed(self, line: bytes) -> Event | None:
        """Process one line, returning an Event when the line dispatches one."""
        if not line:
            return self._dispatch()

        if line.startswith(b":"):
            return None

        name, sep, value = line.partition(b":")
        if sep and value.startswith(b" "):
            value = value[1:]

        field_name = name.decode("utf-8", errors="replace")
        if field_name == KEY_EVENT:
            self._seen_field = True
            self._type = value.decode("utf-8", errors="replace")
        elif field_name == KEY_ID:
            self._seen_field = True
            self._id = value.decode("utf-8", errors="replace")
        elif field_name == KEY_DATA:
            self._seen_field = True
            if self._data is None:
                self._data = bytearray(value)
            else:
                self._data += b"\n"
                self._data += value
        # retry and unknown fields are ignored
        return None

    def _dispatch(self) -> Event | None:
        if not self._seen_field:
            return None
        event = Event(
            source=self.source,
            type=self._type,
            id=self._id,
            data=bytes(self._data) if self._data is not None else b"",
        )
        self._seen_field = False
        self._type = ""
        self._id = ""
        self._data = None
        return event
