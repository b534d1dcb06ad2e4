"""Background workers.

Each worker module exports one async task function compatible with
:class:`sbtc_gateway.worker.WorkerTask`; :data:`worker` aggregates them.
"""
from __future__ import annotations

from sbtc_gateway.settings import settings
from sbtc_gateway.worker import BackgroundWorker, WorkerTask
from sbtc_gateway.workers.payment_reconcile import payment_reconcile
from sbtc_gateway.workers.webhook_purge import webhook_purge_delivered
from sbtc_gateway.workers.webhook_reclaim import webhook_reclaim_stuck

worker = BackgroundWorker(
    interval_seconds=settings.worker_interval_seconds,
    tasks=[
        WorkerTask(name="webhook_reclaim_stuck", fn=webhook_reclaim_stuck),
        WorkerTask(name="webhook_purge_delivered", fn=webhook_purge_delivered, every=60),
        WorkerTask(name="payment_reconcile", fn=payment_reconcile),
    ],
)

start_background_worker = worker.start
stop_background_worker = worker.stop

__all__ = [
    "worker",
    "start_background_worker",
    "stop_background_worker",
]
