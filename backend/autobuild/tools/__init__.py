"""Tools and utilities for backend operations.

This package contains utilities for:
- Claude Agent SDK configuration (builders.py)
- Whitelisted command execution for installs, dev servers and deploys (command_adapter.py)
- Path validation for workspace access (path_utils.py)
- Exception types for tool operations (exceptions.py)

"""

from .builders import build_claude_options
from .command_adapter import CommandAdapter, CommandResult
from .exceptions import (
    CommandTimeoutError,
    CommandValidationError,
    NoFreePortError,
    PathValidationError,
    ToolError,
)
from .path_utils import ensure_within, resolve_workspace_path

__all__ = [
    # Builders
    "build_claude_options",
    # Adapters
    "CommandAdapter",
    "CommandResult",
    # Exceptions
    "ToolError",
    "CommandTimeoutError",
    "CommandValidationError",
    "NoFreePortError",
    "PathValidationError",
    # Utilities
    "resolve_workspace_path",
    "ensure_within",
]
