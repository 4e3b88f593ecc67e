from __future__ import annotations

import abc
import asyncio
import contextlib
import logging
from typing import Any, Protocol

from langproxy.rpc.jsonrpc import Message

logger = logging.getLogger(__name__)


class Transport(abc.ABC):
    """Abstract transport exposing the proxy to outside clients."""

    @abc.abstractmethod
    async def serve(self) -> None:
        """Serve the transport until shutdown."""

    @abc.abstractmethod
    async def aclose(self) -> None:
        """Close transport resources."""


class Connection(abc.ABC):
    """Duplex byte connection to a language server.

    Reads and writes may run concurrently; a connection never needs more than
    one reader and one writer at a time.
    """

    @abc.abstractmethod
    async def read(self, max_bytes: int) -> bytes:
        """Return up to ``max_bytes`` bytes, or ``b""`` at end of input."""

    @abc.abstractmethod
    async def write(self, data: bytes) -> None:
        """Write all of ``data``. Raises OSError on failure."""

    @abc.abstractmethod
    async def close(self) -> None: ...


class MessageFramer(abc.ABC):
    """Abstract stream framer for JSON-RPC messages."""

    @abc.abstractmethod
    def encode(self, message: Message | dict[str, Any]) -> bytes: ...

    @abc.abstractmethod
    async def decode_next(self, connection: Connection) -> Message: ...


class _Writer(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def close(self) -> None: ...


class StreamConnection(Connection):
    """Connection over an asyncio reader/writer pair (e.g. child process pipes)."""

    def __init__(self, reader: asyncio.StreamReader, writer: _Writer) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    async def read(self, max_bytes: int) -> bytes:
        return await self._reader.read(max_bytes)

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionResetError("connection is closed")
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        wait_closed = getattr(self._writer, "wait_closed", None)
        if wait_closed is not None:
            # Pipe to an already dead process
            with contextlib.suppress(OSError):
                await wait_closed()
        logger.debug("Connection closed")
