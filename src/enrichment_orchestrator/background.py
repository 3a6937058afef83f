from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

from .metrics import background_task_failures_total

log = structlog.get_logger()


class BackgroundTasks:
    """
    Detached fire-and-forget tasks.

    The caller never awaits a spawned task; its exceptions are only logged and
    counted. Strong references are held until completion so tasks are not
    garbage-collected mid-flight.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            log.info("background_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            background_task_failures_total.labels(task=task.get_name().split(":", 1)[0]).inc()
            log.error("background_task_failed", task=task.get_name(), error=str(exc), error_type=type(exc).__name__)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
