from __future__ import annotations

from typing import Any


class LangProxyError(Exception):
    """Base class for all langproxy errors."""


class ProtocolError(LangProxyError):
    """A failure reading the inbound frame stream.

    Any of these leaves the connection in an unknown state, so the session
    that sees one stops reading and fails every outstanding call.
    """


class FramingError(ProtocolError):
    """Malformed frame header (missing prefix, bad length, oversized)."""


class DecodeError(ProtocolError):
    """Frame body is not valid UTF-8 JSON or not a JSON-RPC message."""


class StreamClosedError(ProtocolError):
    """The connection closed in the middle of a frame."""


class EndOfStream(ProtocolError):
    """The connection closed cleanly between frames."""


class EncodeError(LangProxyError):
    """Outbound message cannot be represented as JSON."""


class WriteError(LangProxyError):
    """I/O failure while writing a frame to the connection."""


class HandshakeError(LangProxyError):
    """The server did not follow the startup sequence."""


class SessionClosedError(LangProxyError):
    """The session is closed or broken and accepts no more calls."""


class RemoteError(LangProxyError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any | None = None) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_error(cls, error: Any) -> RemoteError:
        if not isinstance(error, dict):
            return cls(-32603, f"Malformed error object: {error!r}")
        code = error.get("code")
        return cls(
            code if isinstance(code, int) else -32603,
            str(error.get("message", "")),
            error.get("data"),
        )

    def to_dict(self) -> dict[str, Any]:
        err: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            err["data"] = self.data
        return err


__all__ = [
    "LangProxyError",
    "ProtocolError",
    "FramingError",
    "DecodeError",
    "StreamClosedError",
    "EndOfStream",
    "EncodeError",
    "WriteError",
    "HandshakeError",
    "SessionClosedError",
    "RemoteError",
]
