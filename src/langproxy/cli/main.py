from __future__ import annotations

import asyncio
import contextlib
import logging

import typer

from langproxy.config import ProxyConfig
from langproxy.config_loader import load_config
from langproxy.lsp.notifications import NotificationSink
from langproxy.lsp.session import Session
from langproxy.proxy import LanguageProxy
from langproxy.rpc.errors import LangProxyError, SessionClosedError
from langproxy.server.process import (
    LanguageServerProcess,
    prepare_workspace,
    remove_workspace,
    start_server,
)
from langproxy.transport.framing import ContentLengthFramer
from langproxy.transport.http import HttpTransport
from langproxy.utils.log_setup import configure_logging

app = typer.Typer(add_completion=False)
logger = logging.getLogger(__name__)


async def _stop_when_broken(session: Session, transport: HttpTransport) -> None:
    failure = await session.wait_broken()
    logger.error("Language server connection lost (%s), stopping HTTP server", failure)
    await transport.aclose()


async def _run(cfg: ProxyConfig) -> None:
    root = prepare_workspace(cfg.workspace)
    server: LanguageServerProcess | None = None
    session: Session | None = None
    try:
        server = await start_server(cfg.server, cwd=root)
        session = await Session.open(
            server.connection(),
            root=root,
            startup_notifications=cfg.server.startup_notifications,
            sink=NotificationSink(server.name, history=cfg.notification_history),
            framer=ContentLengthFramer(max_message_size=cfg.server.max_message_size),
            request_timeout=cfg.request_timeout,
        )
        proxy = LanguageProxy(session, timeout=cfg.request_timeout)
        transport = HttpTransport(
            proxy, host=cfg.http.host, port=cfg.http.port, path=cfg.http.path
        )
        logger.info(
            "Serving %s on http://%s:%d%s", cfg.name, cfg.http.host, cfg.http.port, cfg.http.path
        )
        watcher = asyncio.create_task(_stop_when_broken(session, transport))
        try:
            await transport.serve()
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
        if session.failure is not None:
            raise SessionClosedError("Language server connection lost") from session.failure
    finally:
        # Close the session first so its reader stops before the pipes go away
        if session is not None:
            if not session.closed:
                try:
                    await session.shutdown()
                except (LangProxyError, TimeoutError) as e:
                    logger.warning("Server shutdown failed: %s", e)
            await session.close()
        if server is not None:
            await server.terminate()
        if not cfg.workspace.workspace_mode:
            remove_workspace(root)


@app.callback()
def default() -> None:
    """Expose a language server's hover and completion over HTTP."""


@app.command("serve")
def serve(
    config: str | None = typer.Option(None, "--config", "-c", help="Path to YAML/JSON config"),
    host: str | None = typer.Option(None, help="Bind host (overrides config/env)"),
    port: int | None = typer.Option(None, help="Bind port (overrides config/env)"),
    root: str | None = typer.Option(None, help="Workspace root directory"),
    workspace_mode: bool | None = typer.Option(
        None,
        "--workspace-mode/--single-file-mode",
        help="Share the root instead of a per-session subdirectory",
    ),
    log_level: str | None = typer.Option(
        None, help="Logging level (default: LANGPROXY_LOG_LEVEL or INFO)"
    ),
) -> None:
    """Start the language server and serve hover/completion over HTTP."""
    configure_logging(log_level)
    try:
        cfg = load_config(config)
    except (OSError, RuntimeError, ValueError) as e:
        logger.error("Could not load configuration: %s", e)
        raise typer.Exit(code=2) from e
    if host:
        cfg.http.host = host
    if port:
        cfg.http.port = port
    if root:
        cfg.workspace.root = root
    if workspace_mode is not None:
        cfg.workspace.workspace_mode = workspace_mode
    try:
        asyncio.run(_run(cfg))
    except KeyboardInterrupt:
        logger.info("Received KeyboardInterrupt, shutting down.")
    except (LangProxyError, OSError) as e:
        logger.error("langproxy failed: %s", e)
        raise typer.Exit(code=1) from e


def main() -> None:
    app()


if __name__ == "__main__":
    main()
