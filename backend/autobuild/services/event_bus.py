from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable

from autobuild.models.build import BuildProgressEvent

logger = logging.getLogger(__name__)

ProgressHandler = Callable[[BuildProgressEvent], object]


class ProgressStream:
    """Queue-backed subscription to one project's progress events."""

    def __init__(self, bus: ProgressEventBus, project_id: str):
        self.project_id = project_id
        self.queue: asyncio.Queue[BuildProgressEvent] = asyncio.Queue()
        self._closed = False
        self._unsubscribe = bus.subscribe(project_id, self.push)

    def push(self, event: BuildProgressEvent) -> None:
        if not self._closed:
            self.queue.put_nowait(event)

    async def get(self) -> BuildProgressEvent:
        return await self.queue.get()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._unsubscribe()


class ProgressEventBus:
    """In-process publish/subscribe of build progress, keyed by project id.

    Handlers run synchronously inside ``publish`` in subscription order; an
    exception in one handler is logged and does not reach the publisher or the
    remaining handlers. Nothing is persisted or replayed.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, dict[int, ProgressHandler]] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    def subscribe(self, project_id: str, handler: ProgressHandler) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers.setdefault(project_id, {})[token] = handler

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(project_id)
                if handlers is None:
                    return
                handlers.pop(token, None)
                if not handlers:
                    self._subscribers.pop(project_id, None)

        return unsubscribe

    def publish(self, project_id: str, event: BuildProgressEvent) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(project_id, {}).values())

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.warning(
                    "Progress subscriber for project %s raised; ignoring",
                    project_id,
                    exc_info=True,
                )

    def open_stream(self, project_id: str) -> ProgressStream:
        return ProgressStream(self, project_id)

    def subscriber_count(self, project_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(project_id, {}))

    def shutdown(self) -> None:
        with self._lock:
            self._subscribers.clear()
