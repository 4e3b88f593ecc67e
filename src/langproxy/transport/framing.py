"""Content-Length framing for JSON-RPC over a byte stream.

Wire format::

    Content-Length: <decimal byte length>\\r\\n
    \\r\\n
    <UTF-8 JSON body>

Frames do not line up with I/O reads, so the framer keeps whatever it has
read past the end of the current frame and starts the next decode from there.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langproxy.rpc.errors import (
    DecodeError,
    EncodeError,
    EndOfStream,
    FramingError,
    StreamClosedError,
)
from langproxy.rpc.jsonrpc import Message, Notification, Request, Response, parse_message
from langproxy.transport.base import Connection, MessageFramer

logger = logging.getLogger(__name__)

CONTENT_LENGTH_PREFIX = "Content-Length: "
HEADER_SEPARATOR = b"\r\n\r\n"
HEADER_ENCODING = "ascii"
CONTENT_ENCODING = "utf-8"

DEFAULT_READ_SIZE = 64 * 1024
DEFAULT_MAX_HEADER_SIZE = 4096
DEFAULT_MAX_MESSAGE_SIZE = 10 * 1024 * 1024


def parse_header(header_bytes: bytes, *, max_message_size: int | None = None) -> int:
    """Return the body length declared by a header block.

    ``header_bytes`` excludes the trailing blank line. The first line must be
    ``Content-Length: <digits>``; further ``Name: value`` lines are accepted
    and ignored.
    """
    try:
        text = header_bytes.decode(HEADER_ENCODING)
    except UnicodeDecodeError as e:
        raise FramingError(f"Header contains non-ASCII bytes: {e}") from e

    first, *rest = text.split("\r\n")
    if not first.startswith(CONTENT_LENGTH_PREFIX):
        raise FramingError(f"Header does not start with {CONTENT_LENGTH_PREFIX!r}: {first!r}")
    value = first[len(CONTENT_LENGTH_PREFIX) :]
    if not value or not value.isdigit():
        raise FramingError(f"Invalid Content-Length value: {value!r}")
    for line in rest:
        if ":" not in line:
            raise FramingError(f"Malformed header line (no colon): {line!r}")

    length = int(value)
    if max_message_size is not None and length > max_message_size:
        raise FramingError(f"Message size {length} exceeds maximum {max_message_size}")
    return length


def decode_body(body: bytes) -> Message:
    try:
        text = body.decode(CONTENT_ENCODING)
    except UnicodeDecodeError as e:
        raise DecodeError(f"Invalid UTF-8 in message body: {e}") from e
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON in message body: {e}") from e
    return parse_message(obj)


class ContentLengthFramer(MessageFramer):
    """Encode and decode Content-Length delimited JSON-RPC frames.

    One framer serves one connection: ``decode_next`` must not be called
    concurrently, since the buffered remainder belongs to a single stream.
    """

    def __init__(
        self,
        *,
        read_size: int = DEFAULT_READ_SIZE,
        max_header_size: int = DEFAULT_MAX_HEADER_SIZE,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self.read_size = read_size
        self.max_header_size = max_header_size
        self.max_message_size = max_message_size
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def encode(self, message: Message | dict[str, Any]) -> bytes:
        if isinstance(message, (Request, Notification, Response)):
            payload: Any = message.to_dict()
        else:
            payload = message
        try:
            body = json.dumps(
                payload, ensure_ascii=False, separators=(",", ":"), allow_nan=False
            ).encode(CONTENT_ENCODING)
        except (TypeError, ValueError) as e:
            raise EncodeError(f"Message cannot be serialized to JSON: {e}") from e
        return f"Content-Length: {len(body)}\r\n\r\n".encode(HEADER_ENCODING) + body

    async def decode_next(self, connection: Connection) -> Message:
        header = await self._read_header(connection)
        length = parse_header(header, max_message_size=self.max_message_size)
        body = await self._read_body(connection, length)
        return decode_body(body)

    async def _read_header(self, connection: Connection) -> bytes:
        searched = 0
        while True:
            # Resume the search just before the previous end so a separator
            # split across two reads is still found.
            idx = self._buffer.find(HEADER_SEPARATOR, max(0, searched - 3))
            if idx != -1:
                header = bytes(self._buffer[:idx])
                del self._buffer[: idx + len(HEADER_SEPARATOR)]
                return header
            searched = len(self._buffer)
            if searched > self.max_header_size:
                raise FramingError(
                    f"No header terminator within {self.max_header_size} bytes"
                )
            chunk = await connection.read(self.read_size)
            if not chunk:
                if not self._buffer:
                    raise EndOfStream("Connection closed between frames")
                raise StreamClosedError(
                    f"Connection closed while reading header ({len(self._buffer)} bytes buffered)"
                )
            self._buffer += chunk

    async def _read_body(self, connection: Connection, length: int) -> bytes:
        while len(self._buffer) < length:
            chunk = await connection.read(max(self.read_size, length - len(self._buffer)))
            if not chunk:
                raise StreamClosedError(
                    f"Incomplete message body: expected {length} bytes, got {len(self._buffer)}"
                )
            self._buffer += chunk
        body = bytes(self._buffer[:length])
        del self._buffer[:length]
        return body
