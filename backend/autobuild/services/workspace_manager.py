from __future__ import annotations

import asyncio
import errno
import logging
import os
import shutil
import socket
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from autobuild.errors import WorkspaceFileNotFoundError
from autobuild.tools.exceptions import NoFreePortError, PathValidationError
from autobuild.tools.path_utils import resolve_workspace_path

logger = logging.getLogger(__name__)

SKIP_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        ".pnpm",
        ".next",
        ".nuxt",
        ".turbo",
        ".cache",
        ".venv",
        "__pycache__",
        "dist",
        "build",
        "coverage",
    }
)

BINARY_EXTENSIONS = frozenset(
    {
        ".ico",
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".webp",
        ".bmp",
        ".woff",
        ".woff2",
        ".ttf",
        ".otf",
        ".eot",
        ".zip",
        ".tar",
        ".gz",
        ".7z",
        ".exe",
        ".dll",
        ".so",
        ".dylib",
        ".pdf",
        ".mp3",
        ".mp4",
        ".wav",
    }
)


@dataclass(slots=True)
class WorkspaceEntry:
    path: str
    name: str
    is_dir: bool
    depth: int
    size: int | None
    updated_at: datetime | None


@dataclass(slots=True)
class WorkspaceFile:
    path: str
    content: str | None
    size: int
    extension: str
    is_binary: bool = False


class WorkspaceManager:
    """Allocates and inspects per-project directories under a single root."""

    def __init__(self, root: Path) -> None:
        self._root = root.expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def workspace_path(self, project_id: str) -> Path:
        if not project_id or "/" in project_id or "\\" in project_id or project_id in {".", ".."}:
            raise PathValidationError(f"Invalid project id '{project_id}'")
        return self._root / project_id

    async def create_workspace(self, project_id: str) -> Path:
        """Create ``<root>/<project_id>``; existing directories are reused."""
        path = self.workspace_path(project_id)
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        return path

    async def workspace_exists(self, project_id: str) -> bool:
        return await asyncio.to_thread(self.workspace_path(project_id).is_dir)

    async def delete_workspace(self, project_id: str) -> None:
        path = self.workspace_path(project_id)
        if await asyncio.to_thread(path.exists):
            await asyncio.to_thread(shutil.rmtree, path)
            logger.info("Deleted workspace %s", path)

    def iter_files(self, workspace: Path, max_depth: int = 10) -> Iterator[WorkspaceEntry]:
        """Lazily walk *workspace*, directories before files, each level sorted by name.

        Entries deeper than *max_depth* (top level is depth 0) are not visited.
        """
        base = workspace.resolve()

        def _walk(directory: Path, depth: int) -> Iterator[WorkspaceEntry]:
            with os.scandir(directory) as scanner:
                children = sorted(
                    scanner,
                    key=lambda entry: (not entry.is_dir(follow_symlinks=False), entry.name),
                )
            for child in children:
                is_dir = child.is_dir(follow_symlinks=False)
                if is_dir and child.name in SKIP_DIRS:
                    continue
                stat_result = child.stat(follow_symlinks=False)
                child_path = Path(child.path)
                yield WorkspaceEntry(
                    path=child_path.relative_to(base).as_posix(),
                    name=child.name,
                    is_dir=is_dir,
                    depth=depth,
                    size=None if is_dir else stat_result.st_size,
                    updated_at=datetime.fromtimestamp(stat_result.st_mtime, UTC),
                )
                if is_dir and depth < max_depth:
                    yield from _walk(child_path, depth + 1)

        return _walk(base, 0)

    async def list_files(self, workspace: Path, max_depth: int = 10) -> list[WorkspaceEntry]:
        if not await asyncio.to_thread(workspace.is_dir):
            return []
        return await asyncio.to_thread(lambda: list(self.iter_files(workspace, max_depth)))

    async def read_file(self, workspace: Path, relative_path: str) -> WorkspaceFile:
        try:
            path = resolve_workspace_path(workspace, relative_path)
        except PathValidationError as exc:
            raise WorkspaceFileNotFoundError(str(exc)) from exc

        if not await asyncio.to_thread(path.is_file):
            raise WorkspaceFileNotFoundError(f"File '{relative_path}' does not exist")

        extension = path.suffix.lower()
        size = (await asyncio.to_thread(path.stat)).st_size
        relative = path.relative_to(workspace.resolve()).as_posix()
        if extension in BINARY_EXTENSIONS:
            return WorkspaceFile(relative, None, size, extension, is_binary=True)

        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except UnicodeDecodeError:
            return WorkspaceFile(relative, None, size, extension, is_binary=True)
        return WorkspaceFile(relative, content, size, extension)

    async def write_file(self, workspace: Path, relative_path: str, content: str) -> Path:
        path = resolve_workspace_path(workspace, relative_path)
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        return path

    async def workspace_size(self, workspace: Path) -> int:
        """Total size in bytes of regular files, skipping ``node_modules``."""

        def _measure() -> int:
            total = 0
            for dirpath, dirnames, filenames in os.walk(workspace):
                dirnames[:] = [name for name in dirnames if name != "node_modules"]
                for filename in filenames:
                    file_path = os.path.join(dirpath, filename)
                    if not os.path.islink(file_path):
                        total += os.path.getsize(file_path)
            return total

        return await asyncio.to_thread(_measure)

    @staticmethod
    def find_free_port(start_port: int = 3100, max_attempts: int = 100) -> int:
        """Return the first port from *start_port* upward that can be bound locally."""
        last_port = min(start_port + max_attempts, 65536)
        for port in range(start_port, last_port):
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
                try:
                    probe.bind(("", port))
                except OSError as exc:
                    if exc.errno in (errno.EADDRINUSE, errno.EACCES):
                        continue
                    raise
                return port
        raise NoFreePortError(
            f"No free port in range {start_port}-{last_port - 1} after {max_attempts} attempts"
        )
