"""Worker: release webhook events whose delivery attempt never finished."""
from __future__ import annotations

from datetime import datetime, timedelta

from sbtc_gateway.db.pool import get_pool
from sbtc_gateway.repositories.webhooks import WebhookEventRepository
from sbtc_gateway.settings import settings


async def webhook_reclaim_stuck(now: datetime) -> str | None:
    """Clear claims older than ``webhook_stuck_minutes`` so the sweep retries them."""
    pool = await get_pool()
    cutoff = now - timedelta(minutes=settings.webhook_stuck_minutes)
    reclaimed = await WebhookEventRepository(pool).reclaim_stuck(cutoff)
    return f"reclaimed={reclaimed}" if reclaimed else None
