from __future__ import annotations

import json
import logging
from typing import Any

import uvicorn

from langproxy.transport.base import Transport

logger = logging.getLogger(__name__)


class HttpTransport(Transport):
    """HTTP transport wired to the language proxy.

    Endpoints:
    - POST <path>: {"method": "hover"|"completion", "params": ...} -> {"result": ...}
    - GET  /health: session statistics
    """

    def __init__(
        self, proxy: Any, host: str = "127.0.0.1", port: int = 8080, path: str = "/api"
    ) -> None:
        self._server = uvicorn.Server(
            uvicorn.Config(create_app(proxy, path), host=host, port=port, log_level="info")
        )
        self._running = False

    async def serve(self) -> None:
        self._running = True
        try:
            await self._server.serve()
        finally:
            self._running = False

    async def aclose(self) -> None:
        self._server.should_exit = True

    @property
    def is_running(self) -> bool:
        return self._running


async def _send_body(send: Any, status: int, body: bytes, content_type: bytes) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": [(b"content-type", content_type)],
        }
    )
    await send({"type": "http.response.body", "body": body, "more_body": False})


async def _send_json(send: Any, status: int, payload: Any) -> None:
    raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    await _send_body(send, status, raw, b"application/json")


async def _send_text(send: Any, status: int, text: str) -> None:
    await _send_body(send, status, text.encode("utf-8"), b"text/plain; charset=utf-8")


def create_app(proxy: Any, path: str = "/api"):
    async def app(scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] == "lifespan":
            while True:
                message = await receive()
                if message["type"] == "lifespan.startup":
                    await send({"type": "lifespan.startup.complete"})
                elif message["type"] == "lifespan.shutdown":
                    await send({"type": "lifespan.shutdown.complete"})
                    return
        if scope["type"] == "websocket":
            await send({"type": "websocket.close", "code": 1003})
            return
        if scope["type"] != "http":
            logger.warning("Ignoring unsupported ASGI scope: %s", scope["type"])
            return
        req_path = scope.get("path", "/")
        method = scope.get("method")

        if method == "GET" and req_path == "/health":
            stats = await proxy.get_stats()
            await _send_json(send, 200, {"status": "ok", **stats})
            return

        if method == "POST" and req_path == path:
            body = b""
            more = True
            while more:
                message = await receive()
                if message["type"] != "http.request":
                    break
                body += message.get("body", b"") or b""
                more = message.get("more_body", False)

            try:
                req = json.loads(body.decode("utf-8"))
                if not isinstance(req, dict):
                    raise ValueError("request body must be a JSON object")
            except (UnicodeDecodeError, ValueError) as e:
                await _send_text(send, 400, f"Failed to parse request: {e}")
                return

            rpc_method = req.get("method")
            logger.info("Received request: %s", rpc_method)
            routed = await proxy.route_request(rpc_method, req.get("params"))
            if "error" in routed:
                err = routed["error"]
                await _send_text(send, 500, f"Failed to process request: {err.get('message')}")
                return
            await _send_json(send, 200, {"result": routed.get("result")})
            return

        await _send_text(send, 404, "Not Found")

    return app
