from __future__ import annotations

import logging
from typing import Any

from langproxy.lsp.session import COMPLETION, HOVER, Session
from langproxy.rpc.errors import LangProxyError, RemoteError
from langproxy.rpc.jsonrpc import METHOD_NOT_FOUND

logger = logging.getLogger(__name__)

ACTIONS: dict[str, str] = {
    "hover": HOVER,
    "completion": COMPLETION,
}


class LanguageProxy:
    def __init__(self, session: Session, timeout: float | None = None) -> None:
        self.session = session
        self.timeout = timeout
        self._served = 0

    async def route_request(self, method: str | None, params: Any | None) -> dict[str, Any]:
        """Run an action against the language server.

        Returns a body with either a "result" or an "error" key, like a
        JSON-RPC response without the envelope.
        """
        lsp_method = ACTIONS.get(method or "")
        if lsp_method is None:
            return {"error": {"code": METHOD_NOT_FOUND, "message": f"Unknown method: {method}"}}
        self._served += 1
        try:
            result = await self.session.call(lsp_method, params, timeout=self.timeout)
        except RemoteError as e:
            return {"error": e.to_dict()}
        except TimeoutError:
            return {"error": {"code": -32001, "message": f"{lsp_method} timed out"}}
        except LangProxyError as e:
            logger.error("%s failed: %s", lsp_method, e)
            return {"error": {"code": -32002, "message": f"Language server failed: {e}"}}
        return {"result": result}

    async def get_stats(self) -> dict[str, Any]:
        return {
            "served": self._served,
            "pending": self.session.pending_count,
            "notifications": self.session.sink.total,
            "closed": self.session.closed,
        }
