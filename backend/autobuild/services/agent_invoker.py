from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
from abc import ABC, abstractmethod
from asyncio.subprocess import PIPE
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from autobuild.services.clarification import extract_options

logger = logging.getLogger(__name__)

INPUT_MARKER = "@@AUTOBUILD_INPUT_REQUIRED@@"
DEFAULT_QUESTION = "The agent needs more information before it can continue."

OutputHandler = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class InputRequest:
    """A question the agent paused on."""

    question: str
    options: list[str] | None = None
    confidence: int | None = None


@dataclass(slots=True)
class AgentRunResult:
    """Terminal outcome of one agent run."""

    success: bool
    output: str = ""
    error: str | None = None
    input_request: InputRequest | None = None
    cancelled: bool = False
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def needs_input(self) -> bool:
        return self.input_request is not None


def parse_input_marker(line: str) -> InputRequest | None:
    """Return the request carried by an input-marker line, or ``None``.

    The marker is followed by JSON ``{"question": ..., "options": [...]}``; any
    other remainder is taken as the question text.
    """
    index = line.find(INPUT_MARKER)
    if index < 0:
        return None

    remainder = line[index + len(INPUT_MARKER) :].strip()
    question = remainder
    options: list[str] | None = None
    try:
        data = json.loads(remainder) if remainder else None
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        question = str(data.get("question") or "").strip()
        raw_options = data.get("options")
        if isinstance(raw_options, list):
            options = [str(option) for option in raw_options if str(option).strip()] or None

    question = question or DEFAULT_QUESTION
    if options is None:
        options = extract_options(question) or None
    return InputRequest(question=question, options=options, confidence=100)


class AgentInvoker(ABC):
    """Runs the external code-generation agent against a workspace."""

    @abstractmethod
    async def run_agent(
        self,
        workspace_path: Path,
        prompt: str,
        *,
        run_id: str,
        on_output: OutputHandler | None = None,
    ) -> AgentRunResult:
        """Run the agent to completion, a pause for input, or cancellation."""

    @abstractmethod
    async def cancel(self, run_id: str) -> bool:
        """Stop the run registered under *run_id*; ``False`` if none is active."""

    async def shutdown(self) -> None:
        return None


class CommandAgentInvoker(AgentInvoker):
    """Agent backed by a CLI process that reads its prompt from stdin.

    Output lines are forwarded as they arrive; stdout is scanned for the input
    marker, which ends the run with an ``input_request``.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        kill_grace_seconds: float = 5.0,
        line_limit: int = 2**20,
    ) -> None:
        if not command:
            raise ValueError("Agent command must not be empty")
        self._command = list(command)
        self._env = dict(env or {})
        self._kill_grace = kill_grace_seconds
        self._line_limit = line_limit
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._active: set[str] = set()
        self._cancelled: set[str] = set()

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: int) -> None:
        if process.returncode is not None:
            return
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, sig)
            else:
                process.send_signal(sig)
        except ProcessLookupError:
            pass

    async def _stop(self, process: asyncio.subprocess.Process) -> None:
        self._signal(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), self._kill_grace)
        except TimeoutError:
            self._signal(process, signal.SIGKILL)
            await process.wait()

    @staticmethod
    async def _send_prompt(process: asyncio.subprocess.Process, prompt: str) -> None:
        assert process.stdin is not None
        try:
            process.stdin.write(prompt.encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()
            await process.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Agent closed stdin before the prompt was fully written")

    async def run_agent(
        self,
        workspace_path: Path,
        prompt: str,
        *,
        run_id: str,
        on_output: OutputHandler | None = None,
    ) -> AgentRunResult:
        env = os.environ.copy()
        env.update(self._env)
        self._active.add(run_id)
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=PIPE,
                stdout=PIPE,
                stderr=PIPE,
                cwd=str(workspace_path),
                env=env,
                limit=self._line_limit,
                start_new_session=True,
            )
        except OSError as exc:
            self._active.discard(run_id)
            self._cancelled.discard(run_id)
            return AgentRunResult(success=False, error=f"Could not start agent: {exc}")

        self._processes[run_id] = process
        logger.info("Agent run %s started (pid %s)", run_id, process.pid)

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        input_request: InputRequest | None = None

        async def pump(
            stream: asyncio.StreamReader | None,
            sink: list[str],
            *,
            watch_marker: bool,
        ) -> None:
            nonlocal input_request
            if stream is None:
                return
            while True:
                raw = await stream.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if watch_marker and input_request is None:
                    request = parse_input_marker(line)
                    if request is not None:
                        input_request = request
                        self._signal(process, signal.SIGTERM)
                        continue
                sink.append(line)
                if on_output is not None and line.strip():
                    await on_output(line)

        try:
            if run_id in self._cancelled:
                logger.info("Agent run %s was cancelled while starting", run_id)
                await self._stop(process)
            else:
                await asyncio.gather(
                    self._send_prompt(process, prompt),
                    pump(process.stdout, stdout_lines, watch_marker=True),
                    pump(process.stderr, stderr_lines, watch_marker=False),
                )
            returncode = await process.wait()
        finally:
            if process.returncode is None:
                await self._stop(process)
            self._processes.pop(run_id, None)
            self._active.discard(run_id)

        output = "\n".join(stdout_lines)
        if run_id in self._cancelled:
            self._cancelled.discard(run_id)
            return AgentRunResult(
                success=False, output=output, error="Agent run cancelled", cancelled=True
            )
        if input_request is not None:
            return AgentRunResult(success=False, output=output, input_request=input_request)
        if returncode != 0:
            stderr_text = "\n".join(stderr_lines).strip()
            return AgentRunResult(
                success=False,
                output=output,
                error=stderr_text or f"Agent exited with code {returncode}",
            )
        return AgentRunResult(success=True, output=output)

    async def cancel(self, run_id: str) -> bool:
        if run_id not in self._active:
            return False
        process = self._processes.get(run_id)
        if process is None:
            # Still spawning; run_agent stops the process as soon as it exists.
            self._cancelled.add(run_id)
            logger.info("Cancelling agent run %s before its process started", run_id)
            return True
        if process.returncode is not None:
            return False
        self._cancelled.add(run_id)
        logger.info("Cancelling agent run %s (pid %s)", run_id, process.pid)
        await self._stop(process)
        return True

    async def shutdown(self) -> None:
        running = list(self._processes.values())
        for process in running:
            self._signal(process, signal.SIGTERM)
        if running:
            await asyncio.gather(*(p.wait() for p in running), return_exceptions=True)
