"""Periodic in-process background worker.

Usage::

    worker = BackgroundWorker(
        interval_seconds=60.0,
        tasks=[WorkerTask(name="webhook_reclaim_stuck", fn=webhook_reclaim_stuck)],
    )
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

# A task receives the current UTC time and returns an optional summary,
# which is logged when non-empty.
TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    name: str
    fn: TaskFn
    every: int = 1  # run on every N-th tick


_WORKER_TASK_KEY = "background_worker_task"


@dataclass
class BackgroundWorker:
    """Runs a list of tasks on a fixed interval.

    A failing task is logged and does not prevent the others from running.
    """

    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)
    _ticks: int = field(default=0, init=False, repr=False)

    async def start(self, app: web.Application) -> None:
        app[_WORKER_TASK_KEY] = asyncio.create_task(self._loop())

    async def stop(self, app: web.Application) -> None:
        task = app.get(_WORKER_TASK_KEY)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def run_once(self, now: datetime | None = None) -> dict[str, str | None]:
        """Run every task due on this tick. Returns ``{task name: summary}``."""
        now = now or datetime.now(timezone.utc)
        self._ticks += 1
        summaries: dict[str, str | None] = {}
        for task in self.tasks:
            if self._ticks % max(task.every, 1):
                continue
            try:
                summaries[task.name] = await task.fn(now)
            except Exception:
                logger.exception("background_task failed", task=task.name)
                continue
            if summaries[task.name]:
                logger.info(
                    "background_task completed",
                    task=task.name,
                    summary=summaries[task.name],
                )
        return summaries

    async def _loop(self) -> None:
        logger.info(
            "background_worker started",
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("background_worker stopped")
                raise
            except Exception:
                logger.exception("background_worker sweep failed")
