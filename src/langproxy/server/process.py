from __future__ import annotations

import asyncio
import asyncio.subprocess as subprocess
import contextlib
import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path

from langproxy.config import ServerConfig, WorkspaceConfig
from langproxy.transport.base import StreamConnection

logger = logging.getLogger(__name__)


def prepare_workspace(cfg: WorkspaceConfig) -> Path:
    """Create the directory the server will treat as its workspace root.

    Workspace mode shares the configured root; otherwise every session gets
    its own subdirectory under it.
    """
    root = Path(cfg.root)
    if not cfg.workspace_mode:
        root = root / uuid.uuid4().hex
    root.mkdir(parents=True, exist_ok=True)
    logger.info("Workspace root: %s", root)
    return root


def remove_workspace(root: Path) -> None:
    """Delete a per-session root made by ``prepare_workspace``."""
    try:
        shutil.rmtree(root)
    except FileNotFoundError:
        return
    except OSError as e:
        logger.warning("Could not remove workspace %s: %s", root, e)
        return
    logger.info("Removed workspace root: %s", root)


@dataclass
class LanguageServerProcess:
    cfg: ServerConfig
    process: subprocess.Process

    @property
    def name(self) -> str:
        return os.path.basename(self.cfg.command[0])

    def is_running(self) -> bool:
        return self.process.returncode is None

    def connection(self) -> StreamConnection:
        assert self.process.stdout is not None and self.process.stdin is not None
        return StreamConnection(self.process.stdout, self.process.stdin)

    async def terminate(self, timeout: float = 5.0) -> None:
        if self.process.returncode is not None:
            return
        try:
            self.process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(self.process.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning("%s did not exit after %.1fs, killing it", self.name, timeout)
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()


async def start_server(cfg: ServerConfig, cwd: str | Path | None = None) -> LanguageServerProcess:
    if not cfg.command:
        raise ValueError("ServerConfig.command is empty")
    env = os.environ.copy()
    env.update(cfg.env)
    logger.info("Starting language server: %s", " ".join(cfg.command))
    proc = await asyncio.create_subprocess_exec(
        *cfg.command,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        env=env,
        cwd=str(cwd) if cwd is not None else None,
    )
    return LanguageServerProcess(cfg=cfg, process=proc)
