"""Detached background execution for ingestion runs.

Submitters get the task back but are never expected to await it; completion
is observed by polling the resource's persisted status. Crashes are logged
from the done-callback and never surface to the submitter.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundScheduler:
    def __init__(self) -> None:
        # Strong references: the event loop only keeps weak ones to tasks.
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    def submit(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        if self._closed:
            coro.close()
            raise RuntimeError("Background scheduler is shut down")
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("Scheduled background task %s", name)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every task submitted so far (tests and the CLI use this)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, *, timeout: float = 10.0) -> None:
        self._closed = True
        if not self._tasks:
            return
        logger.info("Waiting up to %.1fs for %d background task(s)", timeout, len(self._tasks))
        _, still_running = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in still_running:
            logger.warning("Cancelling background task %s at shutdown", task.get_name())
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s crashed",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )
