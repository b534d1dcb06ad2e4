"""asyncpg repositories backing payment intents and webhooks."""
from __future__ import annotations

from dataclasses import dataclass

import asyncpg  # type: ignore[import-untyped]
from aiohttp import web

from sbtc_gateway.db.pool import get_pool
from sbtc_gateway.repositories.merchants import MerchantRepository
from sbtc_gateway.repositories.payment_intents import PaymentIntentRepository
from sbtc_gateway.repositories.webhooks import WebhookEndpointRepository, WebhookEventRepository

REPOSITORIES_KEY = "repositories"


@dataclass
class Repositories:
    merchants: MerchantRepository
    payment_intents: PaymentIntentRepository
    webhook_endpoints: WebhookEndpointRepository
    webhook_events: WebhookEventRepository

    @classmethod
    def from_pool(cls, pool: asyncpg.Pool) -> "Repositories":
        return cls(
            merchants=MerchantRepository(pool),
            payment_intents=PaymentIntentRepository(pool),
            webhook_endpoints=WebhookEndpointRepository(pool),
            webhook_events=WebhookEventRepository(pool),
        )


async def init_repositories(app: web.Application) -> None:
    """Startup hook; keeps repositories injected by ``create_app`` as they are."""
    if REPOSITORIES_KEY not in app:
        app[REPOSITORIES_KEY] = Repositories.from_pool(await get_pool())


def get_repositories(app: web.Application) -> Repositories:
    return app[REPOSITORIES_KEY]


__all__ = [
    "MerchantRepository",
    "PaymentIntentRepository",
    "Repositories",
    "WebhookEndpointRepository",
    "WebhookEventRepository",
    "get_repositories",
    "init_repositories",
]
