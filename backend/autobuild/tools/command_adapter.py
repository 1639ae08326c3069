from __future__ import annotations

import asyncio
import logging
import os
from asyncio.subprocess import DEVNULL, PIPE
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .exceptions import CommandTimeoutError, CommandValidationError
from .path_utils import resolve_workspace_path

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandResult:
    command: str
    args: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str


class CommandAdapter:
    """Async helper that runs whitelisted commands inside a workspace.

    Used for dependency installation, dev servers and the deploy CLI. The
    code-generation agent is launched by the agent invoker, not through here.
    """

    def __init__(
        self,
        base_dir: Path,
        allowed_commands: Sequence[str] | None = None,
    ) -> None:
        self._base_dir = base_dir.resolve()
        self._allowed = frozenset(allowed_commands) if allowed_commands is not None else None

    def _resolve_cwd(self, relative_path: str | None) -> Path:
        if relative_path is None:
            return self._base_dir
        return resolve_workspace_path(self._base_dir, relative_path)

    def _check_allowed(self, command: str) -> None:
        if self._allowed is not None and command not in self._allowed:
            raise CommandValidationError(f"Command '{command}' is not permitted")

    def _environment(self, env: Mapping[str, str] | None) -> dict[str, str]:
        process_env = os.environ.copy()
        if env:
            process_env.update(env)
        return process_env

    async def run(
        self,
        command: str,
        *,
        args: Sequence[str] | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = 120.0,
    ) -> CommandResult:
        self._check_allowed(command)
        working_dir = self._resolve_cwd(cwd)
        process = await asyncio.create_subprocess_exec(
            command,
            *(args or []),
            stdout=PIPE,
            stderr=PIPE,
            cwd=str(working_dir),
            env=self._environment(env),
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise CommandTimeoutError(
                f"Command '{command}' timed out after {timeout} seconds"
            ) from exc
        exit_code = process.returncode if process.returncode is not None else -1
        return CommandResult(
            command=command,
            args=tuple(args or []),
            exit_code=exit_code,
            stdout=stdout_bytes.decode(errors="replace"),
            stderr=stderr_bytes.decode(errors="replace"),
        )

    async def spawn(
        self,
        command: str,
        *,
        args: Sequence[str] | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> asyncio.subprocess.Process:
        """Start a long-running command detached from our stdio and return its handle."""
        self._check_allowed(command)
        working_dir = self._resolve_cwd(cwd)
        process = await asyncio.create_subprocess_exec(
            command,
            *(args or []),
            stdin=DEVNULL,
            stdout=DEVNULL,
            stderr=DEVNULL,
            cwd=str(working_dir),
            env=self._environment(env),
            start_new_session=True,
        )
        logger.info("Spawned %s (pid %s) in %s", command, process.pid, working_dir)
        return process
