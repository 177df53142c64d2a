"""Incremental decoder for the server-sent event stream of the messages API.

The remote service answers a streaming request with blank-line separated
records::

    event: content_block_delta
    data: {"type": "content_block_delta", "index": 0, ...}

Network reads can split a record (or a multi-byte character) anywhere, so the
decoder buffers until a full record is available and only then emits a
:class:`Frame`. A record whose JSON payload is malformed is logged and
dropped; it never aborts the stream.
"""

import codecs
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator

from turnkeeper.logging import get_logger

log = get_logger(__name__)


class FrameKind(str, Enum):
    """Event kinds understood by the turn loop."""

    MESSAGE_START = "message_start"
    CONTENT_BLOCK_START = "content_block_start"
    CONTENT_BLOCK_DELTA = "content_block_delta"
    CONTENT_BLOCK_STOP = "content_block_stop"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    PING = "ping"
    ERROR = "error"


_KINDS_BY_NAME = {kind.value: kind for kind in FrameKind}


@dataclass(frozen=True)
class Frame:
    """One decoded protocol record."""

    kind: FrameKind
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def index(self) -> int | None:
        value = self.payload.get("index")
        return value if isinstance(value, int) else None

    @property
    def block(self) -> dict[str, Any]:
        value = self.payload.get("content_block")
        return value if isinstance(value, dict) else {}

    @property
    def delta(self) -> dict[str, Any]:
        value = self.payload.get("delta")
        return value if isinstance(value, dict) else {}

    @property
    def text_delta(self) -> str:
        """Text carried by a ``text_delta`` delta, empty for anything else."""
        if self.kind != FrameKind.CONTENT_BLOCK_DELTA:
            return ""
        delta = self.delta
        if delta.get("type") != "text_delta":
            return ""
        return str(delta.get("text") or "")


class FrameDecoder:
    """Turn arbitrarily chunked stream data into frames.

    Feed raw chunks with :meth:`feed` and call :meth:`finish` once the
    underlying stream is exhausted. The decoder is single-use: create a new
    one per remote call.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Undecoded trailing data."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[Frame]:
        """Append a chunk and return every frame it completed."""
        if isinstance(chunk, (bytes, bytearray)):
            text = self._utf8.decode(bytes(chunk))
        else:
            text = chunk
        if not text:
            return []

        self._buffer = (self._buffer + text).replace("\r\n", "\n")

        frames: list[Frame] = []
        boundary = self._buffer.find("\n\n")
        while boundary != -1:
            record = self._buffer[:boundary]
            self._buffer = self._buffer[boundary + 2:]
            frame = self._parse_record(record)
            if frame is not None:
                frames.append(frame)
            boundary = self._buffer.find("\n\n")
        return frames

    def finish(self) -> list[Frame]:
        """Flush the byte decoder; leftover partial records are only reported."""
        tail = self._utf8.decode(b"", final=True)
        frames = self.feed(tail) if tail else []
        if self._buffer.strip():
            log.warning(
                "Stream ended with undecoded data",
                leftover=self._buffer[:200],
                leftover_chars=len(self._buffer),
            )
        self._buffer = ""
        return frames

    @staticmethod
    def _parse_record(record: str) -> Frame | None:
        event_name = ""
        data_lines: list[str] = []
        for line in record.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                event_name = value.strip()
            elif name == "data":
                data_lines.append(value)

        if not data_lines:
            if event_name:
                log.debug("Dropping record without data", event_type=event_name)
            return None

        data = "\n".join(data_lines)
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            log.warning("Dropping malformed stream record", event_type=event_name, data=data[:200], error=str(e))
            return None
        if not isinstance(payload, dict):
            log.warning("Dropping non-object stream payload", event_type=event_name)
            return None

        if not event_name:
            event_name = str(payload.get("type") or "")
        kind = _KINDS_BY_NAME.get(event_name)
        if kind is None:
            log.debug("Ignoring unknown stream event", event_type=event_name)
            return None
        return Frame(kind=kind, payload=payload)


async def decode_frames(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[Frame]:
    """Decode an async stream of raw chunks into frames."""
    decoder = FrameDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
    for frame in decoder.finish():
        yield frame
