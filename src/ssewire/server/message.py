"""Outgoing messages and their text/event-stream serialization."""

from __future__ import annotations

from dataclasses import dataclass

from ssewire.protocol import KEY_DATA, KEY_EVENT, KEY_ID, KEY_RETRY


@dataclass(frozen=True)
class Message:
    """A single event authored by the server.

    ``id`` and ``type`` must be single-line; the payload may span lines.
    """

    payload: str
    id: str = ""
    type: str = ""

    def __post_init__(self) -> None:
        for name in (KEY_ID, "type"):
            value = getattr(self, name)
            if "\n" in value or "\r" in value:
                raise ValueError(f"message {name} must not contain line breaks: {value!r}")

    def to_bytes(self) -> bytes:
        """Serialize to one wire frame, terminated by a blank line."""
        lines: list[str] = []
        if self.id:
            lines.append(f"{KEY_ID}: {self.id}")
        if self.type:
            lines.append(f"{KEY_EVENT}: {self.type}")
        # A raw line break would end the field, so each payload line gets its own data field.
        payload = self.payload.replace("\r\n", "\n").replace("\r", "\n")
        for data_line in payload.split("\n"):
            lines.append(f"{KEY_DATA}: {data_line}")
        return ("\n".join(lines) + "\n\n").encode()


def format_retry(retry_ms: int) -> bytes:
    """Reconnection delay hint, sent once ahead of the first frame."""
    return f"{KEY_RETRY}: {retry_ms}\n".encode()
