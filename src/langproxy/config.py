from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    command: list[str] = Field(
        default_factory=lambda: ["pyright-langserver", "--stdio"],
        description="Command to start the language server (stdio)",
    )
    env: dict[str, str] = Field(default_factory=dict)
    startup_notifications: int = Field(2, ge=0)
    max_message_size: int = Field(10 * 1024 * 1024, gt=0)


class WorkspaceConfig(BaseModel):
    root: str = "/app/workspace"
    workspace_mode: bool = False


class HttpConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080
    path: str = "/api"


class ProxyConfig(BaseModel):
    name: str = "langproxy"
    language: Literal["python"] = "python"
    server: ServerConfig = Field(default_factory=ServerConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    request_timeout: float | None = 10.0
    notification_history: int = Field(1000, gt=0)


__all__ = [
    "ServerConfig",
    "WorkspaceConfig",
    "HttpConfig",
    "ProxyConfig",
]
