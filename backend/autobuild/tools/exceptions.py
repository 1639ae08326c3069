from __future__ import annotations


class ToolError(RuntimeError):
    """Base error for tool operations."""


class PathValidationError(ToolError):
    """Raised when a requested path is outside the workspace sandbox."""


class CommandValidationError(ToolError):
    """Raised when attempting to execute a non-whitelisted command."""


class CommandTimeoutError(ToolError):
    """Raised when a command exceeds its configured timeout."""


class NoFreePortError(ToolError):
    """Raised when port probing exhausts its attempts."""
