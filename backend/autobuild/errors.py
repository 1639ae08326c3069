"""Domain exception hierarchy for the build orchestrator.

Each error carries the HTTP status the routes translate it to, so callers
never need to match on message strings. Filesystem failures are not wrapped:
``OSError`` from the workspace propagates unchanged.
"""

from __future__ import annotations


class BuildError(Exception):
    """Base for all orchestrator errors."""

    status_code: int = 500

    def __init__(self, message: str = "Build error", *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BuildValidationError(BuildError):
    """Rejected input, raised before any state is created."""

    status_code = 400


class NotFoundError(BuildError):
    status_code = 404


class ProjectNotFoundError(NotFoundError):
    """Raised when a project identifier cannot be resolved."""

    def __init__(self, project_id: str):
        super().__init__(f"Project '{project_id}' was not found")
        self.project_id = project_id


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str):
        super().__init__(f"Interactive session '{session_id}' was not found")
        self.session_id = session_id


class WorkspaceFileNotFoundError(NotFoundError):
    """Raised when a workspace path does not exist or escapes the workspace."""


class InvalidStateError(BuildError):
    """Operation is not legal for the project's (or session's) current state."""

    status_code = 409


class AgentFailure(BuildError):
    """The code-generation agent exited unsuccessfully."""

    status_code = 502


class DeployFailure(BuildError):
    """The deploy provider did not publish the workspace."""

    status_code = 502
