import asyncio
import json
import re

from langproxy.lsp.session import Session
from langproxy.rpc.jsonrpc import Message, Notification, Request, parse_message
from langproxy.transport.base import Connection, StreamConnection

_FRAME = re.compile(rb"Content-Length: (\d+)\r\n\r\n")


def frame_json(obj: dict) -> bytes:
    body = json.dumps(obj, separators=(",", ":")).encode()
    header = f"Content-Length: {len(body)}\r\n\r\n".encode()
    return header + body


def log_message(text: str, type_: int = 3) -> dict:
    return {
        "jsonrpc": "2.0",
        "method": "window/logMessage",
        "params": {"type": type_, "message": text},
    }


class ChunkConnection(Connection):
    """Serves pre-cut chunks one read at a time, then end of input."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = [c for c in chunks if c]
        self.written = bytearray()
        self.reads = 0

    async def read(self, max_bytes: int) -> bytes:
        self.reads += 1
        if not self._chunks:
            return b""
        chunk = self._chunks.pop(0)
        if len(chunk) > max_bytes:
            self._chunks.insert(0, chunk[max_bytes:])
            chunk = chunk[:max_bytes]
        return chunk

    async def write(self, data: bytes) -> None:
        self.written.extend(data)

    async def close(self) -> None:
        return None


class FakeServer:
    """Server side of an in-memory connection.

    Frames fed with ``send`` are what the session reads; everything the
    session writes is captured in ``written``.
    """

    def __init__(self):
        self.reader = asyncio.StreamReader()
        self.written = bytearray()
        self.closed = False
        self.connection = StreamConnection(self.reader, self)

    # writer side, used by StreamConnection
    def write(self, data: bytes):
        self.written.extend(data)

    async def drain(self):
        return None

    def close(self):
        self.closed = True

    def send(self, obj: dict):
        self.reader.feed_data(frame_json(obj))

    def send_raw(self, data: bytes):
        self.reader.feed_data(data)

    def eof(self):
        self.reader.feed_eof()

    def sent(self) -> list[Message]:
        out = []
        data = bytes(self.written)
        pos = 0
        while pos < len(data):
            m = _FRAME.match(data, pos)
            assert m is not None, f"unframed bytes at {pos}: {data[pos:pos + 40]!r}"
            start = m.end()
            end = start + int(m.group(1))
            out.append(parse_message(json.loads(data[start:end])))
            pos = end
        return out

    def sent_requests(self, method: str | None = None) -> list[Request]:
        return [
            m
            for m in self.sent()
            if isinstance(m, Request) and (method is None or m.method == method)
        ]

    def sent_notifications(self) -> list[Notification]:
        return [m for m in self.sent() if isinstance(m, Notification)]


async def wait_until(predicate, timeout: float = 1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


async def open_session(server: FakeServer, **kwargs) -> Session:
    server.send(log_message("Pyright language server 1.1.401 starting"))
    server.send(log_message("Server root directory: /usr/lib/pyright"))
    server.send(
        {
            "jsonrpc": "2.0",
            "id": 1,
            "result": {
                "capabilities": {"hoverProvider": True, "completionProvider": {}},
                "serverInfo": {"name": "Pyright", "version": "1.1.401"},
            },
        }
    )
    return await Session.open(server.connection, root="/app/workspace", **kwargs)
