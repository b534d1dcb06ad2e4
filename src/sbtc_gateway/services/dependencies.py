"""Service wiring and shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from aiohttp import ClientSession, web

from sbtc_gateway.chain.explorer import HiroExplorerClient
from sbtc_gateway.repositories import get_repositories
from sbtc_gateway.services.payment_intents import PaymentIntentService
from sbtc_gateway.services.reconciler import ChainReconciler
from sbtc_gateway.services.webhooks import WebhookEmitter, WebhookService
from sbtc_gateway.settings import settings
from sbtc_gateway.webhooks_dispatcher import DISPATCH_SIGNAL_KEY

SERVICES_KEY = "services"
EXPLORER_KEY = "block_explorer"
_EXPLORER_SESSION_KEY = "explorer_http_session"

MERCHANT_ID_HEADER = "X-Merchant-Id"


@dataclass
class Services:
    emitter: WebhookEmitter
    payment_intents: PaymentIntentService
    reconciler: ChainReconciler
    webhooks: WebhookService


async def init_services(app: web.Application) -> None:
    """Startup hook: build services over the app's repositories and explorer."""
    repositories = get_repositories(app)

    explorer = app.get(EXPLORER_KEY)
    if explorer is None:
        session = ClientSession()
        app[_EXPLORER_SESSION_KEY] = session
        explorer = HiroExplorerClient(
            session,
            base_url=settings.explorer_api_url or "",
            api_key=settings.explorer_api_key,
            timeout_seconds=settings.explorer_request_timeout_seconds,
            min_interval_seconds=settings.explorer_min_request_interval_seconds,
        )

    emitter = WebhookEmitter(
        repositories.webhook_endpoints,
        repositories.webhook_events,
        on_enqueued=app[DISPATCH_SIGNAL_KEY].set,
    )
    payment_intents = PaymentIntentService(
        repositories.payment_intents,
        repositories.merchants,
        emitter,
        confirm_event_type=settings.confirm_event_type,
    )
    app[SERVICES_KEY] = Services(
        emitter=emitter,
        payment_intents=payment_intents,
        reconciler=ChainReconciler(
            payment_intents,
            repositories.merchants,
            explorer,
            contract_id=settings.sbtc_contract_id or "",
            page_size=settings.explorer_page_size,
        ),
        webhooks=WebhookService(
            repositories.webhook_endpoints,
            repositories.webhook_events,
            emitter,
            max_attempts=settings.webhook_max_attempts,
        ),
    )


async def close_services(app: web.Application) -> None:
    session = app.get(_EXPLORER_SESSION_KEY)
    if session is not None:
        await session.close()


def get_services(request: web.Request) -> Services:
    return request.app[SERVICES_KEY]


def get_payment_intent_service(request: web.Request) -> PaymentIntentService:
    return get_services(request).payment_intents


def get_reconciler(request: web.Request) -> ChainReconciler:
    return get_services(request).reconciler


def get_webhook_service(request: web.Request) -> WebhookService:
    return get_services(request).webhooks


def require_merchant(request: web.Request) -> UUID:
    """Merchant id forwarded by the upstream auth gateway."""
    header = request.headers.get(MERCHANT_ID_HEADER)
    if header is None:
        raise web.HTTPUnauthorized(reason=f"Header {MERCHANT_ID_HEADER} is required")
    try:
        return UUID(header)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {MERCHANT_ID_HEADER}") from exc
