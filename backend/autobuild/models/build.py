from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BuildStatus(str, Enum):
    """Lifecycle phases of a build project."""

    QUEUED = "queued"
    PLANNING = "planning"
    BUILDING = "building"
    TESTING = "testing"
    DEPLOYING = "deploying"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({BuildStatus.COMPLETE, BuildStatus.FAILED, BuildStatus.CANCELLED})
ACTIVE_STATUSES = frozenset(
    {
        BuildStatus.PLANNING,
        BuildStatus.BUILDING,
        BuildStatus.TESTING,
        BuildStatus.DEPLOYING,
    }
)


class ProjectType(str, Enum):
    WEB_APP = "web-app"
    API = "api"
    CLI = "cli"
    LIBRARY = "library"
    FULL_STACK = "full-stack"


class DeployTarget(str, Enum):
    LOCALHOST = "localhost"
    VERCEL = "vercel"


class ProgressEventKind(str, Enum):
    """What a progress event describes."""

    CONNECTED = "connected"
    PHASE = "phase"
    MESSAGE = "message"
    INPUT_REQUIRED = "input_required"


class BuildProject(BaseModel):
    """Domain representation of a build project."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    description: str
    project_type: ProjectType
    status: BuildStatus = BuildStatus.QUEUED
    workspace_path: Path
    preferred_stack: str | None = None
    deploy_target: DeployTarget = DeployTarget.LOCALHOST
    local_port: int | None = None
    deploy_url: str | None = None
    production_url: str | None = None
    error: str | None = None
    build_prompt: str | None = None
    commit_sha: str | None = None
    github_url: str | None = None
    retried_from: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class BuildLogEntry(BaseModel):
    """Append-only audit record of a project's pipeline."""

    id: int
    project_id: str
    phase: BuildStatus
    message: str
    timestamp: datetime


class BuildProgressEvent(BaseModel):
    """Transient notification broadcast on the progress event bus."""

    project_id: str
    phase: BuildStatus | None = None
    message: str = ""
    kind: ProgressEventKind = ProgressEventKind.PHASE
    progress: int | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)


class BuildStatusSnapshot(BaseModel):
    """Result of a status read: the project (if known) and its log."""

    project: BuildProject | None = None
    logs: list[BuildLogEntry] = Field(default_factory=list)
