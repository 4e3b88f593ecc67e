from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from langproxy.rpc.errors import DecodeError

JSONRPC_VERSION = "2.0"

METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


@dataclass(frozen=True)
class Request:
    id: int | str
    method: str
    params: Any | None = None

    def to_dict(self) -> dict[str, Any]:
        req: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            req["params"] = self.params
        return req


@dataclass(frozen=True)
class Notification:
    method: str
    params: Any | None = None

    def to_dict(self) -> dict[str, Any]:
        note: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            note["params"] = self.params
        return note


@dataclass(frozen=True)
class Response:
    id: int | str | None
    result: Any | None = None
    error: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "error": self.error}
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "result": self.result}


Message = Request | Notification | Response


def make_request(id_: int | str, method: str, params: Any | None = None) -> Request:
    return Request(id_, method, params)


def make_notification(method: str, params: Any | None = None) -> Notification:
    return Notification(method, params)


def make_response(id_: int | str | None, result: Any) -> Response:
    return Response(id_, result=result)


def make_error(id_: int | str | None, code: int, message: str, data: Any | None = None) -> Response:
    err: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return Response(id_, error=err)


def parse_message(obj: Any) -> Message:
    """Classify a decoded JSON value as a Request, Notification or Response.

    The shape is decided by key presence: ``method`` with ``id`` is a request,
    ``method`` alone a notification, ``id`` without ``method`` a response.
    """
    if not isinstance(obj, dict):
        raise DecodeError(f"JSON-RPC message must be an object, got {type(obj).__name__}")

    if "method" in obj:
        method = obj["method"]
        if not isinstance(method, str):
            raise DecodeError(f"JSON-RPC method must be a string, got {method!r}")
        if "id" in obj:
            return Request(obj["id"], method, obj.get("params"))
        return Notification(method, obj.get("params"))

    if "id" in obj:
        has_result = "result" in obj
        has_error = "error" in obj
        if has_result == has_error:
            raise DecodeError(
                f"Response id={obj['id']!r} must carry exactly one of 'result' or 'error'"
            )
        if has_error:
            return Response(obj["id"], error=obj["error"])
        return Response(obj["id"], result=obj["result"])

    raise DecodeError("Object has neither 'method' nor 'id'; not a JSON-RPC message")
