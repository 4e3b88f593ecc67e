from __future__ import annotations

import json
import os
import shlex
from pathlib import Path

import yaml
from pydantic import ValidationError

from langproxy.config import ProxyConfig

_TRUE = {"1", "true", "yes", "on"}


def _apply_env_overrides(cfg: ProxyConfig) -> ProxyConfig:
    root = os.environ.get("LANGPROXY_ROOT")
    if root:
        cfg.workspace.root = root
    mode = os.environ.get("LANGPROXY_WORKSPACE_MODE")
    if mode:
        cfg.workspace.workspace_mode = mode.strip().lower() in _TRUE
    host = os.environ.get("LANGPROXY_HOST")
    if host:
        cfg.http.host = host
    port = os.environ.get("LANGPROXY_PORT")
    if port:
        try:
            cfg.http.port = int(port)
        except ValueError as e:
            raise RuntimeError(f"Invalid LANGPROXY_PORT: {port!r}") from e
    command = os.environ.get("LANGPROXY_SERVER_COMMAND")
    if command:
        cfg.server.command = shlex.split(command)
    timeout = os.environ.get("LANGPROXY_REQUEST_TIMEOUT")
    if timeout:
        try:
            value = float(timeout)
        except ValueError as e:
            raise RuntimeError(f"Invalid LANGPROXY_REQUEST_TIMEOUT: {timeout!r}") from e
        cfg.request_timeout = value if value > 0 else None
    return cfg


def load_config(path: str | None = None) -> ProxyConfig:
    """Load a JSON or YAML config file (or defaults) and apply env overrides."""
    data: object = {}
    if path:
        p = Path(path)
        text = p.read_text(encoding="utf-8")
        if p.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)

    # Accept a bare command string: { "server": { "command": "pyright-langserver --stdio" } }
    if isinstance(data, dict) and isinstance(data.get("server"), dict):
        server = data["server"]
        if isinstance(server.get("command"), str):
            data = {**data, "server": {**server, "command": shlex.split(server["command"])}}

    try:
        cfg = ProxyConfig.model_validate(data)
    except ValidationError as e:
        raise RuntimeError(f"Invalid configuration: {e}") from e
    return _apply_env_overrides(cfg)
