"""Worker: purge old delivered webhook events."""
from __future__ import annotations

from datetime import datetime, timedelta

from sbtc_gateway.db.pool import get_pool
from sbtc_gateway.repositories.webhooks import WebhookEventRepository
from sbtc_gateway.settings import settings


async def webhook_purge_delivered(now: datetime) -> str | None:
    cutoff = now - timedelta(days=settings.webhook_delivered_retention_days)
    purged = await WebhookEventRepository(await get_pool()).delete_old_delivered(cutoff)
    return f"purged={purged}" if purged else None
