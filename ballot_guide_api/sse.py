"""Server-sent event framing.

Frames look like ``event: <type>\\ndata: <json>\\n\\n``. ``FrameDecoder``
turns arbitrary text chunks back into frames and knows nothing about the
transport, so it can be fed from an HTTP response, a file or a test string.
"""

import json
from dataclasses import dataclass
from typing import Any

DEFAULT_EVENT = "message"


def encode_frame(event: str, data: Any) -> str:
    """Encode one frame. Compact JSON never contains a raw newline."""
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n"


@dataclass(frozen=True)
class Frame:
    event: str
    data: str

    def json(self) -> Any:
        return json.loads(self.data)


class FrameDecoder:
    """Incremental decoder: accumulate until a blank line, decode, dispatch.

    Handles frames split across chunks, CRLF line endings, comment lines and
    multi-line ``data:`` fields (joined with newlines).
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, chunk: str) -> list[Frame]:
        """Add text and return every frame it completed."""
        self._buffer += chunk
        frames: list[Frame] = []
        while True:
            newline = self._buffer.find("\n")
            if newline < 0:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]
            frame = self._process_line(line.rstrip("\r"))
            if frame is not None:
                frames.append(frame)
        return frames

    def close(self) -> list[Frame]:
        """Flush at end of stream.

        A last frame that lost its terminating blank line is still dispatched.
        """
        frames: list[Frame] = []
        if self._buffer:
            line, self._buffer = self._buffer, ""
            self._process_line(line.rstrip("\r"))
        frame = self._dispatch()
        if frame is not None:
            frames.append(frame)
        return frames

    def _process_line(self, line: str) -> Frame | None:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> Frame | None:
        if not self._data:
            self._event = None
            return None
        frame = Frame(event=self._event or DEFAULT_EVENT, data="\n".join(self._data))
        self._event = None
        self._data = []
        return frame
