from langproxy.lsp.notifications import LogMessage, NotificationSink
from langproxy.lsp.session import COMPLETION, HOVER, Session, initialize_params

__all__ = [
    "COMPLETION",
    "HOVER",
    "LogMessage",
    "NotificationSink",
    "Session",
    "initialize_params",
]
