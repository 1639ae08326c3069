from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from autobuild.services.workspace_manager import WorkspaceManager
from autobuild.tools.command_adapter import CommandAdapter
from autobuild.tools.exceptions import CommandTimeoutError

logger = logging.getLogger(__name__)

DEV_SERVER_COMMANDS = ["npm", "npx"]

Emit = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class DevServer:
    project_id: str
    port: int
    process: asyncio.subprocess.Process


class DevServerService:
    """Installs dependencies and runs a built project's dev server on a local port."""

    def __init__(
        self,
        *,
        start_port: int = 3100,
        probe_attempts: int = 100,
        install_timeout: float = 900.0,
        startup_delay: float = 3.0,
        kill_grace_seconds: float = 5.0,
    ) -> None:
        self.start_port = start_port
        self.probe_attempts = probe_attempts
        self.install_timeout = install_timeout
        self.startup_delay = startup_delay
        self.kill_grace_seconds = kill_grace_seconds
        self._servers: dict[str, DevServer] = {}
        self._lock = asyncio.Lock()

    def running_port(self, project_id: str) -> int | None:
        server = self._servers.get(project_id)
        if server is None or server.process.returncode is not None:
            return None
        return server.port

    async def start(self, project_id: str, workspace_path: Path, emit: Emit) -> int:
        async with self._lock:
            port = self.running_port(project_id)
            if port is not None:
                await emit(f"Dev server already running on port {port}.")
                return port

            port = WorkspaceManager.find_free_port(self.start_port, self.probe_attempts)
            adapter = CommandAdapter(workspace_path, DEV_SERVER_COMMANDS)
            package_data = await self._read_package_json(workspace_path, emit)

            if package_data is not None:
                await self._install(adapter, emit)

            command, args = self._server_command(package_data, port)
            await emit(f"Starting server on port {port}...")
            process = await adapter.spawn(command, args=args, env={"PORT": str(port)})
            self._servers[project_id] = DevServer(project_id, port, process)

        if self.startup_delay > 0:
            await asyncio.sleep(self.startup_delay)
        if process.returncode not in (None, 0):
            logger.warning(
                "Dev server for %s exited early with code %s", project_id, process.returncode
            )
        return port

    async def stop(self, project_id: str) -> bool:
        server = self._servers.pop(project_id, None)
        if server is None:
            return False
        await self._terminate(server.process)
        logger.info("Stopped dev server for %s on port %s", project_id, server.port)
        return True

    async def shutdown(self) -> None:
        project_ids = list(self._servers)
        for project_id in project_ids:
            await self.stop(project_id)

    async def _install(self, adapter: CommandAdapter, emit: Emit) -> None:
        await emit("Installing dependencies...")
        try:
            result = await adapter.run("npm", args=["install"], timeout=self.install_timeout)
        except CommandTimeoutError:
            await emit(f"npm install timed out after {int(self.install_timeout)} seconds.")
            raise

        stderr_message = self._format_command_output("npm install stderr", result.stderr)
        if stderr_message and result.exit_code != 0:
            await emit(stderr_message)
        if result.exit_code != 0:
            raise RuntimeError(f"npm install failed with exit code {result.exit_code}")
        await emit("Dependencies installed.")

    @staticmethod
    def _server_command(package_data: dict[str, Any] | None, port: int) -> tuple[str, list[str]]:
        scripts = package_data.get("scripts") if isinstance(package_data, dict) else None
        if isinstance(scripts, dict) and "dev" in scripts:
            return "npm", ["run", "dev", "--", "--port", str(port)]
        if isinstance(scripts, dict) and "start" in scripts:
            return "npm", ["run", "start"]
        return "npx", ["--yes", "serve", "-l", str(port)]

    @staticmethod
    async def _read_package_json(workspace_path: Path, emit: Emit) -> dict[str, Any] | None:
        package_json_path = workspace_path / "package.json"
        exists = await asyncio.to_thread(package_json_path.exists)
        if not exists:
            await emit("No package.json found; serving the workspace as static files.")
            return None
        try:
            package_text = await asyncio.to_thread(package_json_path.read_text, encoding="utf-8")
            data = json.loads(package_text)
        except (OSError, ValueError) as exc:
            await emit(f"Warning: unable to parse package.json ({exc}); installing anyway.")
            return {}
        return data if isinstance(data, dict) else {}

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        self._signal(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), self.kill_grace_seconds)
        except TimeoutError:
            self._signal(process, signal.SIGKILL)
            await process.wait()

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: int) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, sig)
            else:
                process.send_signal(sig)
        except ProcessLookupError:
            pass

    @staticmethod
    def _format_command_output(label: str, output: str, *, limit: int = 4000) -> str | None:
        text = output.strip()
        if not text:
            return None
        if len(text) > limit:
            text = f"{text[:limit]}\n[output]"
        return f"{label}:\n{text}"
