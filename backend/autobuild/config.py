from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AUTOBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_prefix: str = "/api"
    allowed_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )
    database_url: str = "sqlite+aiosqlite:///./autobuild.db"
    workspace_root: Path = Field(default_factory=lambda: Path.home() / ".autobuild" / "projects")
    log_level: str = "INFO"

    agent_backend: Literal["claude", "command"] = "claude"
    agent_command: list[str] = Field(
        default_factory=lambda: ["claude", "-p", "--permission-mode", "acceptEdits"],
        description="Argv of the subprocess agent; the prompt is written to its stdin",
    )
    agent_max_turns: int = 100

    dev_server_start_port: int = 3100
    port_probe_attempts: int = 100
    install_timeout: float = 900.0

    deploy_cli: str = "vercel"
    deploy_token: str | None = None
    deploy_team_id: str | None = None
    deploy_production: bool = False
    deploy_timeout: float = 900.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
