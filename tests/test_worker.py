"""Unit tests for sbtc_gateway.worker.BackgroundWorker."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from aiohttp import web

from sbtc_gateway.worker import BackgroundWorker, WorkerTask


async def test_worker_runs_tasks():
    called_with: list[datetime] = []

    async def task_fn(now: datetime) -> str | None:
        called_with.append(now)
        return "ok"

    worker = BackgroundWorker(
        interval_seconds=0.05,
        tasks=[WorkerTask(name="test_task", fn=task_fn)],
    )
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.2)
    await worker.stop(app)

    assert len(called_with) >= 2
    assert all(dt.tzinfo is not None for dt in called_with)


async def test_failing_task_does_not_block_others():
    ran: list[str] = []

    async def broken(now: datetime) -> str | None:
        raise RuntimeError("boom")

    async def healthy(now: datetime) -> str | None:
        ran.append("healthy")
        return None

    worker = BackgroundWorker(
        tasks=[WorkerTask(name="broken", fn=broken), WorkerTask(name="healthy", fn=healthy)]
    )
    summaries = await worker.run_once(datetime.now(timezone.utc))

    assert ran == ["healthy"]
    assert summaries == {"healthy": None}


async def test_every_n_ticks():
    counts = {"fast": 0, "slow": 0}

    def counter(name):
        async def _fn(now: datetime) -> str | None:
            counts[name] += 1
            return f"{name}={counts[name]}"

        return _fn

    worker = BackgroundWorker(
        tasks=[
            WorkerTask(name="fast", fn=counter("fast")),
            WorkerTask(name="slow", fn=counter("slow"), every=3),
        ]
    )
    for _ in range(6):
        await worker.run_once()

    assert counts == {"fast": 6, "slow": 2}


async def test_stop_without_start_is_noop():
    await BackgroundWorker().stop(web.Application())
