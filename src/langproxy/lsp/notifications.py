from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from langproxy.rpc.jsonrpc import Notification

logger = logging.getLogger(__name__)

LOG_MESSAGE = "window/logMessage"
SHOW_MESSAGE = "window/showMessage"

# LSP MessageType -> logging level
_MESSAGE_TYPE_LEVELS = {
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
}

NotificationHandler = Callable[[Notification], Any]

DEFAULT_HISTORY = 1000


@dataclass(frozen=True)
class LogMessage:
    type: int
    message: str


class NotificationSink:
    """
    Side channel for everything the server sends that is not a reply.

    The most recent ``history`` notifications are kept in arrival order;
    ``total`` counts every one ever dispatched. Log-style notifications have
    their text extracted into ``log_messages`` (same window) and re-emitted
    through logging, so server log lines show up in our own log stream.
    """

    def __init__(self, server_name: str = "server", history: int = DEFAULT_HISTORY) -> None:
        self.server_name = server_name
        self.history = history
        self.received: deque[Notification] = deque(maxlen=history)
        self.log_messages: deque[LogMessage] = deque(maxlen=history)
        self.total = 0
        self._handlers: dict[str, NotificationHandler] = {}

    def on(self, method: str, handler: NotificationHandler) -> None:
        self._handlers[method] = handler

    def dispatch(self, note: Notification) -> None:
        self.received.append(note)
        self.total += 1
        if note.method in (LOG_MESSAGE, SHOW_MESSAGE):
            self._record_log(note)
        handler = self._handlers.get(note.method)
        if handler is not None:
            handler(note)
            return
        if note.method in (LOG_MESSAGE, SHOW_MESSAGE):
            return
        if note.method.startswith("$/"):
            logger.debug("Ignoring protocol notification: %s", note.method)
            return
        logger.warning("Unhandled notification from %s: %s", self.server_name, note.method)

    def _record_log(self, note: Notification) -> None:
        params = note.params if isinstance(note.params, dict) else {}
        text = params.get("message")
        if not isinstance(text, str):
            logger.warning("%s without a message: %r", note.method, note.params)
            return
        type_ = params.get("type")
        type_ = type_ if isinstance(type_, int) else 4
        self.log_messages.append(LogMessage(type_, text))
        level = _MESSAGE_TYPE_LEVELS.get(type_, logging.DEBUG)
        logger.log(level, "[%s] %s", self.server_name, text)

    def drain(self) -> list[Notification]:
        """Return the recorded notifications and forget them."""
        out = list(self.received)
        self.received.clear()
        return out

    def __len__(self) -> int:
        return len(self.received)
