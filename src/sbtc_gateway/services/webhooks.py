"""Webhook event emission and operator-facing endpoint/event operations."""
from __future__ import annotations

import copy
import json
import time
from typing import Any, Callable, List
from uuid import UUID

import structlog

from sbtc_gateway.core.exceptions import InvalidStateError
from sbtc_gateway.domain.dto import WebhookEndpointCreateDTO, WebhookEndpointUpdateDTO
from sbtc_gateway.domain.enums import WebhookEventType
from sbtc_gateway.domain.ids import new_endpoint_id, new_event_id
from sbtc_gateway.domain.webhooks import WebhookEndpoint, WebhookEvent
from sbtc_gateway.repositories.webhooks import (
    WebhookEndpointRepository,
    WebhookEventRepository,
)
from sbtc_gateway.services.signing import generate_secret

logger = structlog.get_logger(__name__)

VALID_EVENT_TYPES = frozenset(event.value for event in WebhookEventType)


def snapshot(payload: dict[str, Any]) -> dict[str, Any]:
    """Detached, JSON-safe copy of a payload as of emission time."""
    return json.loads(json.dumps(copy.deepcopy(payload), default=str))


class WebhookEmitter:
    """Materializes one delivery obligation per target endpoint.

    Emission only persists rows; delivery happens in the dispatcher, which is
    woken through ``on_enqueued`` so new events get an immediate attempt.
    """

    def __init__(
        self,
        endpoint_repository: WebhookEndpointRepository,
        event_repository: WebhookEventRepository,
        *,
        on_enqueued: Callable[[], None] | None = None,
    ):
        self._endpoints = endpoint_repository
        self._events = event_repository
        self._on_enqueued = on_enqueued

    def notify(self) -> None:
        if self._on_enqueued is not None:
            self._on_enqueued()

    async def emit(
        self,
        *,
        merchant_id: UUID,
        event_type: str,
        payload: dict[str, Any],
        payment_intent_id: str | None = None,
        endpoint_id: str | None = None,
        notify: bool = True,
    ) -> List[WebhookEvent]:
        """Create events for ``endpoint_id`` or every active subscribed endpoint.

        Pass ``notify=False`` when emitting inside a transaction and call
        :meth:`notify` after it commits.
        """
        if event_type not in VALID_EVENT_TYPES:
            raise ValueError(f"Invalid event type: {event_type}")

        if endpoint_id is not None:
            targets = [await self._endpoints.get(merchant_id, endpoint_id)]
        else:
            targets = await self._endpoints.list_active_subscribed(merchant_id, event_type)

        events: List[WebhookEvent] = []
        for endpoint in targets:
            event = await self._events.enqueue(
                event_id=new_event_id(),
                merchant_id=merchant_id,
                webhook_endpoint_id=endpoint.id,
                event_type=event_type,
                payment_intent_id=payment_intent_id,
                payload=snapshot(payload),
            )
            events.append(event)

        logger.info(
            "webhook events enqueued",
            merchant_id=str(merchant_id),
            event_type=event_type,
            payment_intent_id=payment_intent_id,
            event_ids=[event.id for event in events],
        )
        if events and notify:
            self.notify()
        return events


class WebhookService:
    """Endpoint management plus the operator actions on events."""

    def __init__(
        self,
        endpoint_repository: WebhookEndpointRepository,
        event_repository: WebhookEventRepository,
        emitter: WebhookEmitter,
        *,
        max_attempts: int,
    ):
        self._endpoints = endpoint_repository
        self._events = event_repository
        self._emitter = emitter
        self.max_attempts = max_attempts

    async def create_endpoint(
        self, merchant_id: UUID, dto: WebhookEndpointCreateDTO
    ) -> WebhookEndpoint:
        return await self._endpoints.create(
            endpoint_id=new_endpoint_id(),
            merchant_id=merchant_id,
            url=dto.url,
            events=dto.events,
            secret=generate_secret(),
            description=dto.description,
            active=dto.active,
        )

    async def list_endpoints(self, merchant_id: UUID) -> List[WebhookEndpoint]:
        return await self._endpoints.list_by_merchant(merchant_id)

    async def get_endpoint(self, merchant_id: UUID, endpoint_id: str) -> WebhookEndpoint:
        return await self._endpoints.get(merchant_id, endpoint_id)

    async def update_endpoint(
        self, merchant_id: UUID, endpoint_id: str, dto: WebhookEndpointUpdateDTO
    ) -> WebhookEndpoint:
        return await self._endpoints.update(
            merchant_id,
            endpoint_id,
            url=dto.url,
            description=dto.description,
            events=dto.events,
            active=dto.active,
        )

    async def delete_endpoint(self, merchant_id: UUID, endpoint_id: str) -> None:
        await self._endpoints.delete(merchant_id, endpoint_id)

    async def send_test_event(self, merchant_id: UUID, endpoint_id: str) -> WebhookEvent:
        """Queue a synthetic ``payment_intent.succeeded`` event for one endpoint."""
        endpoint = await self._endpoints.get(merchant_id, endpoint_id)
        if not endpoint.active:
            raise InvalidStateError("Webhook endpoint is disabled")
        now = time.time()
        payload = {
            "id": f"pi_test_{int(now * 1000)}",
            "object": "payment_intent",
            "amount": 100000,
            "currency": "sbtc",
            "status": "succeeded",
            "description": "Test webhook payment",
            "metadata": {"test": True},
            "created": int(now),
        }
        events = await self._emitter.emit(
            merchant_id=merchant_id,
            event_type=WebhookEventType.PAYMENT_INTENT_SUCCEEDED.value,
            payload=payload,
            endpoint_id=endpoint.id,
        )
        return events[0]

    async def list_events(
        self,
        merchant_id: UUID,
        *,
        event_type: str | None = None,
        endpoint_id: str | None = None,
        delivered: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[List[WebhookEvent], int]:
        return await self._events.list_by_merchant(
            merchant_id,
            event_type=event_type,
            endpoint_id=endpoint_id,
            delivered=delivered,
            limit=limit,
            offset=offset,
        )

    async def get_event(self, merchant_id: UUID, event_id: str) -> WebhookEvent:
        return await self._events.get(event_id, merchant_id)

    async def retry_event(self, merchant_id: UUID, event_id: str) -> WebhookEvent:
        """Make an undelivered event due now; the dispatcher does the attempt."""
        event = await self._events.get(event_id, merchant_id)
        if event.delivered:
            raise InvalidStateError("Webhook event already delivered successfully")
        if event.attempts >= self.max_attempts:
            raise InvalidStateError("Maximum retry attempts reached")
        event = await self._events.clear_retry(merchant_id, event_id)
        logger.info("webhook event retry requested", event_id=event_id, attempts=event.attempts)
        self._emitter.notify()
        return event
