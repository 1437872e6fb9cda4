"""Split an arbitrarily chunked byte stream into event-stream lines."""

from __future__ import annotations

_BOM = b"\xef\xbb\xbf"


class LineSplitter:
    """Incremental line splitter.

    Lines end at ``\\n``; a ``\\r`` right before it is dropped. Only the
    unterminated tail of the last chunk is held between calls.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._at_start = True

    def feed(self, chunk: bytes) -> list[bytes]:
        """Feed a chunk of bytes, return the lines it completes."""
        self._buffer += chunk
        if self._at_start:
            if len(self._buffer) < len(_BOM) and _BOM.startswith(bytes(self._buffer)):
                return []
            if self._buffer.startswith(_BOM):
                del self._buffer[: len(_BOM)]
            self._at_start = False

        lines: list[bytes] = []
        start = 0
        while True:
            end = self._buffer.find(b"\n", start)
            if end == -1:
                break
            line = bytes(self._buffer[start:end])
            if line.endswith(b"\r"):
                line = line[:-1]
            lines.append(line)
            start = end + 1
        del self._buffer[:start]
        return lines

    def flush(self) -> bytes | None:
        """Return the unterminated trailing line, if any, at end of stream."""
        if not self._buffer:
            return None
        line = bytes(self._buffer)
        self._buffer.clear()
        if line.endswith(b"\r"):
            line = line[:-1]
        return line
