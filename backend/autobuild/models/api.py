from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from .build import BuildLogEntry, BuildProject, BuildStatus
from .session import AgentRunState, InteractiveSession, SessionStatus


class BuildStartRequest(BaseModel):
    description: str = Field(..., min_length=1, max_length=8192)
    project_type: str = Field(..., description="One of web-app, api, cli, library, full-stack")
    preferred_stack: str | None = Field(default=None, max_length=512)
    deploy_target: str = Field(default="localhost", description="localhost or vercel")


class BuildStartResponse(BaseModel):
    project_id: str
    status: BuildStatus


class BuildListResponse(BaseModel):
    projects: list[BuildProject] = Field(default_factory=list)


class BuildStatusResponse(BaseModel):
    project: BuildProject
    logs: list[BuildLogEntry] = Field(default_factory=list)
    session: InteractiveSession | None = None
    run_state: AgentRunState | None = None


class BuildCancelResponse(BaseModel):
    project_id: str
    cancelled: bool


class BuildRetryRequest(BaseModel):
    modifications: str | None = Field(default=None, max_length=8192)


class BuildRetryResponse(BaseModel):
    project_id: str
    retried_from: str


class BuildModifyRequest(BaseModel):
    change_description: str = Field(..., min_length=1, max_length=16384)


class BuildModifyResponse(BaseModel):
    project_id: str
    status: BuildStatus


class PendingQuestionResponse(BaseModel):
    project_id: str
    has_question: bool
    session_id: str | None = None
    question: str | None = None
    options: list[str] | None = None


class BuildRespondRequest(BaseModel):
    response: str = Field(..., min_length=1, max_length=8192)


class BuildRespondResponse(BaseModel):
    project_id: str
    session_id: str
    status: SessionStatus
    response: str


class WorkspaceEntryResponse(BaseModel):
    path: str
    name: str
    is_dir: bool
    depth: int
    size: int | None = None
    updated_at: datetime | None = None


class WorkspaceFilesResponse(BaseModel):
    project_id: str
    files: list[WorkspaceEntryResponse] = Field(default_factory=list)


class WorkspaceFileResponse(BaseModel):
    path: str
    content: str | None = None
    size: int
    extension: str
    is_binary: bool = False


class BuildDeleteResponse(BaseModel):
    project_id: str
    deleted: bool


class HealthResponse(BaseModel):
    status: str
    database: bool
