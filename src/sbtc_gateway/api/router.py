"""API router composition for aiohttp."""
from __future__ import annotations

from aiohttp import web

from sbtc_gateway.api.routes import (
    payment_intents,
    public,
    webhook_endpoints,
    webhook_events,
)

ROUTE_MODULES = [
    payment_intents,
    public,
    webhook_endpoints,
    webhook_events,
]


def setup_routes(app: web.Application) -> None:
    """Attach domain routes to the aiohttp application."""
    for module in ROUTE_MODULES:
        app.add_routes(module.routes)
