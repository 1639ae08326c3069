"""Claude Agent SDK configuration builder.

The agent works with the SDK's built-in tools (Read, Write, Bash, ...) directly
inside the project workspace; nothing is exposed through custom MCP tools.
"""

from __future__ import annotations

import logging
from pathlib import Path

from claude_agent_sdk import ClaudeAgentOptions

logger = logging.getLogger(__name__)

BUILD_TOOLS = [
    "Read",
    "Write",
    "Edit",
    "Glob",
    "Grep",
    "Bash",
    "BashOutput",
    "KillShell",
    "WebSearch",
    "WebFetch",
    "TodoWrite",
]


def build_claude_options(
    workspace_path: Path,
    *,
    system_prompt: str,
    max_turns: int | None = None,
) -> ClaudeAgentOptions:
    """Build Claude Agent options for a run inside *workspace_path*.

    Args:
        workspace_path: The project directory where the agent operates.
        system_prompt: Standing instructions, including how to ask for input.
        max_turns: Optional cap on agent turns for this run.

    Returns:
        Configured ClaudeAgentOptions with the built-in file and shell tools.
    """
    logger.debug("Agent workspace: %s", workspace_path)

    return ClaudeAgentOptions(
        allowed_tools=list(BUILD_TOOLS),
        permission_mode="acceptEdits",
        cwd=str(workspace_path),
        system_prompt=system_prompt,
        max_turns=max_turns,
    )
