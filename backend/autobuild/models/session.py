from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionStatus(str, Enum):
    WAITING_FOR_INPUT = "waiting_for_input"
    ANSWERED = "answered"
    CLOSED = "closed"


class AgentRunState(str, Enum):
    """Sub-state of a pipeline run while the agent is involved."""

    RUNNING = "running"
    WAITING_FOR_INPUT = "waiting_for_input"
    RESUMED = "resumed"


class InteractiveSession(BaseModel):
    """An agent run paused on a clarifying question."""

    id: str
    project_id: str
    status: SessionStatus = SessionStatus.WAITING_FOR_INPUT
    pending_question: str | None = None
    pending_options: list[str] | None = None
    confidence: int | None = None
    response: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    answered_at: datetime | None = None
    closed_at: datetime | None = None
