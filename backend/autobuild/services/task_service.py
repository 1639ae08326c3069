from __future__ import annotations

import asyncio
from typing import Any


class TaskService:
    """Tracks the background pipeline task of each project and cancels them on shutdown.

    A project can be reserved before its task exists so that callers which
    await between deciding to launch and launching cannot both launch.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._reserved: set[str] = set()
        self._lock = asyncio.Lock()

    def reserve(self, project_id: str) -> bool:
        """Claim *project_id* for a launch; ``False`` if it is running or already claimed."""
        if self.is_running(project_id):
            return False
        self._reserved.add(project_id)
        return True

    def release(self, project_id: str) -> None:
        self._reserved.discard(project_id)

    async def track_task(self, project_id: str, task: asyncio.Task[Any]) -> None:
        async with self._lock:
            self._tasks[project_id] = task
            self._reserved.discard(project_id)

        def _forget(finished: asyncio.Task[Any]) -> None:
            if self._tasks.get(project_id) is finished:
                del self._tasks[project_id]

        task.add_done_callback(_forget)

    def is_running(self, project_id: str) -> bool:
        if project_id in self._reserved:
            return True
        task = self._tasks.get(project_id)
        return task is not None and not task.done()

    async def wait_for(self, project_id: str) -> None:
        task = self._tasks.get(project_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        pending: list[asyncio.Task[Any]] = []
        async with self._lock:
            self._reserved.clear()
            if self._tasks:
                pending = list(self._tasks.values())
                self._tasks.clear()

        for task in pending:
            task.cancel()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
