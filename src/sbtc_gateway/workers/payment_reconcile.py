"""Worker: reconcile recent unpaid payment intents against the chain.

Events emitted here are not pushed to the dispatcher directly; its periodic
sweep picks them up.
"""
from __future__ import annotations

from datetime import datetime, timedelta

import structlog
from aiohttp import ClientSession

from sbtc_gateway.chain.explorer import HiroExplorerClient
from sbtc_gateway.core.exceptions import GatewayError
from sbtc_gateway.db.pool import get_pool
from sbtc_gateway.domain.enums import PaymentIntentStatus
from sbtc_gateway.repositories import Repositories
from sbtc_gateway.services.payment_intents import PaymentIntentService
from sbtc_gateway.services.reconciler import RECONCILABLE_STATUSES, ChainReconciler
from sbtc_gateway.services.webhooks import WebhookEmitter
from sbtc_gateway.settings import settings

logger = structlog.get_logger(__name__)


async def payment_reconcile(now: datetime) -> str | None:
    repositories = Repositories.from_pool(await get_pool())
    intents = await repositories.payment_intents.list_reconcilable(
        statuses=RECONCILABLE_STATUSES,
        updated_after=now - timedelta(hours=settings.reconcile_max_age_hours),
        limit=settings.reconcile_batch_size,
    )
    if not intents:
        return None

    emitter = WebhookEmitter(repositories.webhook_endpoints, repositories.webhook_events)
    service = PaymentIntentService(
        repositories.payment_intents,
        repositories.merchants,
        emitter,
        confirm_event_type=settings.confirm_event_type,
    )
    settled = 0
    async with ClientSession() as session:
        reconciler = ChainReconciler(
            service,
            repositories.merchants,
            HiroExplorerClient(
                session,
                base_url=settings.explorer_api_url or "",
                api_key=settings.explorer_api_key,
                timeout_seconds=settings.explorer_request_timeout_seconds,
                min_interval_seconds=settings.explorer_min_request_interval_seconds,
            ),
            contract_id=settings.sbtc_contract_id or "",
            page_size=settings.explorer_page_size,
        )
        for intent in intents:
            try:
                result = await reconciler.reconcile(intent.id)
            except GatewayError as exc:
                logger.warning(
                    "payment_reconcile: intent skipped",
                    payment_intent_id=intent.id,
                    error=str(exc),
                )
                continue
            if result.status == PaymentIntentStatus.SUCCEEDED:
                settled += 1
    return f"checked={len(intents)} settled={settled}"
