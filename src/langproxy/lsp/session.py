from __future__ import annotations

import asyncio
import contextlib
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from langproxy.lsp.notifications import NotificationSink
from langproxy.rpc.errors import (
    EndOfStream,
    HandshakeError,
    LangProxyError,
    RemoteError,
    SessionClosedError,
    WriteError,
)
from langproxy.rpc.jsonrpc import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    Message,
    Notification,
    Request,
    Response,
    make_error,
    make_notification,
    make_request,
    make_response,
)
from langproxy.transport.base import Connection
from langproxy.transport.framing import ContentLengthFramer

logger = logging.getLogger(__name__)

HOVER = "textDocument/hover"
COMPLETION = "textDocument/completion"

RequestHandler = Callable[[Any], Any | Awaitable[Any]]

DEFAULT_CAPABILITIES: dict[str, Any] = {
    "textDocument": {
        "completion": {"dynamicRegistration": True},
        "hover": {"dynamicRegistration": True},
    },
}


def initialize_params(
    root: str | Path,
    capabilities: dict[str, Any] | None = None,
    workspace_name: str = "Workspace Folder",
) -> dict[str, Any]:
    root_uri = Path(root).resolve().as_uri()
    return {
        # Left unset so the server does not exit together with this process.
        "processId": None,
        "rootUri": root_uri,
        "capabilities": capabilities if capabilities is not None else DEFAULT_CAPABILITIES,
        "workspaceFolders": [{"uri": root_uri, "name": workspace_name}],
    }


def _configuration_items(params: Any) -> list[None]:
    items = params.get("items", []) if isinstance(params, dict) else []
    return [None for _ in items]


class Session:
    """
    One LSP conversation over one connection.

    A single reader task owns the inbound side of the connection. Callers
    register a future under a fresh request id and wait on it; the reader
    completes the future whose id matches each response and hands everything
    else to the notification sink or the server-request handlers.
    """

    def __init__(
        self,
        connection: Connection,
        *,
        sink: NotificationSink | None = None,
        framer: ContentLengthFramer | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self._connection = connection
        self.sink = sink if sink is not None else NotificationSink()
        self._framer = framer or ContentLengthFramer()
        self.request_timeout = request_timeout
        self._ids = itertools.count(1)
        self._pending: dict[int | str, asyncio.Future[Response]] = {}
        self._write_lock = asyncio.Lock()
        self._reader_task: asyncio.Task[None] | None = None
        self._failure: BaseException | None = None
        self._closed = False
        self._broken = asyncio.Event()
        self.server_capabilities: dict[str, Any] = {}
        self._request_handlers: dict[str, RequestHandler] = {
            "client/registerCapability": lambda params: None,
            "client/unregisterCapability": lambda params: None,
            "window/workDoneProgress/create": lambda params: None,
            "workspace/configuration": _configuration_items,
        }

    @classmethod
    async def open(
        cls,
        connection: Connection,
        *,
        root: str | Path,
        capabilities: dict[str, Any] | None = None,
        startup_notifications: int = 2,
        sink: NotificationSink | None = None,
        framer: ContentLengthFramer | None = None,
        request_timeout: float | None = None,
    ) -> Session:
        """Run the startup handshake on ``connection`` and return a ready session."""
        session = cls(connection, sink=sink, framer=framer, request_timeout=request_timeout)
        await session.handshake(
            initialize_params(root, capabilities), startup_notifications=startup_notifications
        )
        session.start()
        return session

    @property
    def closed(self) -> bool:
        return self._closed or self._failure is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    async def wait_broken(self) -> BaseException:
        """Wait until the reader stops on a connection failure and return it."""
        await self._broken.wait()
        assert self._failure is not None
        return self._failure

    def on_request(self, method: str, handler: RequestHandler) -> None:
        """Answer server-initiated ``method`` requests with ``handler(params)``."""
        self._request_handlers[method] = handler

    async def handshake(
        self, init_params: dict[str, Any], *, startup_notifications: int = 2
    ) -> None:
        """Consume the startup notifications, then run initialize/initialized.

        Must run before ``start()``: until the reader task exists, this is
        the only code reading the connection.
        """
        if self._reader_task is not None:
            raise HandshakeError("Handshake must run before the reader task starts")
        try:
            for position in range(1, startup_notifications + 1):
                msg = await self._framer.decode_next(self._connection)
                if not isinstance(msg, Notification):
                    raise HandshakeError(
                        f"Expected startup notification #{position}, got {type(msg).__name__}"
                    )
                self._dispatch_notification(msg)

            req_id = next(self._ids)
            await self._write(make_request(req_id, "initialize", init_params))
            while True:
                msg = await self._framer.decode_next(self._connection)
                if isinstance(msg, Notification):
                    self._dispatch_notification(msg)
                    continue
                if not isinstance(msg, Response) or msg.id != req_id:
                    raise HandshakeError(f"Expected initialize response id={req_id}, got {msg!r}")
                break
            if msg.is_error:
                raise HandshakeError("Server rejected initialize") from RemoteError.from_error(
                    msg.error
                )
            result = msg.result if isinstance(msg.result, dict) else {}
            self.server_capabilities = result.get("capabilities") or {}
            logger.info("Server initialized: %s", result.get("serverInfo", {}))

            await self.send_notification("initialized", {})
        except HandshakeError as e:
            self._failure = e
            raise
        except LangProxyError as e:
            self._failure = e
            raise HandshakeError(f"Handshake failed: {e}") from e

    def start(self) -> None:
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop())

    async def send_notification(self, method: str, params: Any | None = None) -> None:
        if self.closed:
            raise SessionClosedError(f"Cannot send {method}: session is closed") from self._failure
        await self._write(make_notification(method, params))

    async def call(
        self,
        method: str,
        params: Any | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and wait for its result.

        Raises RemoteError for an error response, TimeoutError when
        ``timeout`` (default: ``request_timeout``) elapses, and the reader's
        failure if the connection breaks while waiting.
        """
        if self.closed:
            raise SessionClosedError(f"Cannot call {method}: session is closed") from self._failure
        if timeout is None:
            timeout = self.request_timeout
        req_id = next(self._ids)
        fut: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        try:
            await self._write(make_request(req_id, method, params))
            if timeout is not None:
                resp = await asyncio.wait_for(fut, timeout=timeout)
            else:
                resp = await fut
        except TimeoutError:
            logger.warning("Request timed out: method=%s id=%s", method, req_id)
            raise
        finally:
            self._pending.pop(req_id, None)
        if resp.is_error:
            raise RemoteError.from_error(resp.error)
        return resp.result

    async def hover(self, params: Any, *, timeout: float | None = None) -> Any:
        return await self.call(HOVER, params, timeout=timeout)

    async def completion(self, params: Any, *, timeout: float | None = None) -> Any:
        return await self.call(COMPLETION, params, timeout=timeout)

    async def shutdown(self, *, timeout: float | None = 5.0) -> None:
        """Ask the server to shut down, then tell it to exit."""
        await self.call("shutdown", timeout=timeout)
        await self.send_notification("exit")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reader_task:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        self._fail_pending(SessionClosedError("Session closed"))
        await self._connection.close()

    async def __aenter__(self) -> Session:
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def _write(self, message: Message) -> None:
        data = self._framer.encode(message)
        async with self._write_lock:
            try:
                await self._connection.write(data)
            except OSError as e:
                raise WriteError(f"Failed to write {type(message).__name__}: {e}") from e

    async def _read_loop(self) -> None:
        while True:
            try:
                msg = await self._framer.decode_next(self._connection)
            except asyncio.CancelledError:
                raise
            except EndOfStream as e:
                logger.info("Server closed the connection")
                self._break(e)
                return
            except Exception as e:
                logger.error("Read loop failed, session is now broken: %s", e)
                self._break(e)
                return

            if isinstance(msg, Response):
                self._resolve(msg)
            elif isinstance(msg, Notification):
                self._dispatch_notification(msg)
            else:
                await self._answer_server_request(msg)

    def _resolve(self, resp: Response) -> None:
        # bool is an int subclass and True == 1; a boolean id never matches
        matchable = isinstance(resp.id, (int, str)) and not isinstance(resp.id, bool)
        fut = self._pending.pop(resp.id, None) if matchable else None
        if fut is None or fut.done():
            logger.warning("Response id=%r matches no pending request", resp.id)
            return
        fut.set_result(resp)

    def _dispatch_notification(self, note: Notification) -> None:
        try:
            self.sink.dispatch(note)
        except Exception:
            logger.exception("Notification handler failed for %s", note.method)

    async def _answer_server_request(self, req: Request) -> None:
        handler = self._request_handlers.get(req.method)
        if handler is None:
            logger.warning("Unhandled server request: %s", req.method)
            reply = make_error(req.id, METHOD_NOT_FOUND, f"Method not found: {req.method}")
        else:
            try:
                result = handler(req.params)
                if inspect.isawaitable(result):
                    result = await result
                reply = make_response(req.id, result)
            except Exception as e:
                logger.exception("Server request handler failed for %s", req.method)
                reply = make_error(req.id, INTERNAL_ERROR, str(e))
        try:
            await self._write(reply)
        except LangProxyError as e:
            logger.warning("Could not answer server request %s: %s", req.method, e)

    def _break(self, exc: BaseException) -> None:
        self._failure = exc
        self._broken.set()
        self._fail_pending(exc)

    def _fail_pending(self, exc: BaseException) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for fut in pending:
            if not fut.done():
                fut.set_exception(exc)
