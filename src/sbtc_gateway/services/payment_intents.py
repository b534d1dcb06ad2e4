"""Payment intent lifecycle service."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import structlog

from sbtc_gateway.core.exceptions import InvalidStateError, NotFoundError
from sbtc_gateway.domain.dto import PaymentIntentCreateDTO
from sbtc_gateway.domain.enums import PaymentIntentStatus, WebhookEventType
from sbtc_gateway.domain.ids import new_mock_tx_id, new_payment_intent_id
from sbtc_gateway.domain.models import PaymentIntent
from sbtc_gateway.repositories.merchants import MerchantRepository
from sbtc_gateway.repositories.payment_intents import PaymentIntentRepository
from sbtc_gateway.services.state_machine import (
    allowed_sources,
    validate_payment_intent_transition,
)
from sbtc_gateway.services.webhooks import WebhookEmitter

logger = structlog.get_logger(__name__)

SIMULATED_FAILURE_REASON = "Simulated failure for testing"


class PaymentIntentService:
    """State machine operations for payment intents.

    Every transition is a compare-and-swap on the stored status, and the
    webhook events it produces are written in the same transaction. A
    transition that loses the race (or starts from a disallowed state)
    raises :class:`InvalidStateError` and emits nothing.
    """

    def __init__(
        self,
        repository: PaymentIntentRepository,
        merchant_repository: MerchantRepository,
        emitter: WebhookEmitter,
        *,
        confirm_event_type: str = WebhookEventType.PAYMENT_INTENT_CREATED.value,
    ):
        self._repository = repository
        self._merchants = merchant_repository
        self._emitter = emitter
        self._confirm_event_type = confirm_event_type

    async def create_intent(self, merchant_id: UUID, data: PaymentIntentCreateDTO) -> PaymentIntent:
        await self._merchants.get(merchant_id)
        intent = await self._repository.create(
            intent_id=new_payment_intent_id(),
            merchant_id=merchant_id,
            amount=data.amount,
            amount_usd=data.amount_usd,
            currency=data.currency,
            description=data.description,
            customer_address=data.customer_address,
            customer_email=data.customer_email,
            metadata=data.metadata,
        )
        logger.info(
            "payment intent created",
            payment_intent_id=intent.id,
            merchant_id=str(merchant_id),
            amount=intent.amount,
        )
        return intent

    async def get_intent(self, intent_id: str, merchant_id: UUID | None = None) -> PaymentIntent:
        intent = await self._repository.get(intent_id)
        if merchant_id is not None and intent.merchant_id != merchant_id:
            raise NotFoundError("Payment intent not found")
        return intent

    async def update_metadata(
        self, intent_id: str, patch: dict[str, Any], merchant_id: UUID | None = None
    ) -> PaymentIntent:
        await self.get_intent(intent_id, merchant_id)
        return await self._repository.merge_metadata(intent_id, patch)

    async def confirm(
        self,
        intent_id: str,
        *,
        customer_address: str | None = None,
        merchant_id: UUID | None = None,
    ) -> PaymentIntent:
        return await self._transition(
            intent_id,
            PaymentIntentStatus.PENDING,
            self._confirm_event_type,
            merchant_id=merchant_id,
            customer_address=customer_address,
        )

    async def settle(
        self,
        intent_id: str,
        *,
        tx_id: str,
        customer_address: str | None = None,
        merchant_id: UUID | None = None,
    ) -> PaymentIntent:
        if not tx_id:
            raise ValueError("tx_id is required to settle a payment intent")
        return await self._transition(
            intent_id,
            PaymentIntentStatus.SUCCEEDED,
            WebhookEventType.PAYMENT_INTENT_SUCCEEDED.value,
            merchant_id=merchant_id,
            tx_id=tx_id,
            customer_address=customer_address,
        )

    async def fail(
        self, intent_id: str, *, reason: str, merchant_id: UUID | None = None
    ) -> PaymentIntent:
        return await self._transition(
            intent_id,
            PaymentIntentStatus.FAILED,
            WebhookEventType.PAYMENT_INTENT_FAILED.value,
            merchant_id=merchant_id,
            metadata_patch={
                "failure_reason": reason,
                "failed_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    async def cancel(self, intent_id: str, *, merchant_id: UUID | None = None) -> PaymentIntent:
        return await self._transition(
            intent_id,
            PaymentIntentStatus.CANCELED,
            WebhookEventType.PAYMENT_INTENT_CANCELED.value,
            merchant_id=merchant_id,
        )

    async def simulate_success(
        self, intent_id: str, *, merchant_id: UUID | None = None
    ) -> PaymentIntent:
        """Manual test path: settle with a synthetic transaction id."""
        return await self.settle(intent_id, tx_id=new_mock_tx_id(), merchant_id=merchant_id)

    async def simulate_failure(
        self, intent_id: str, *, merchant_id: UUID | None = None
    ) -> PaymentIntent:
        return await self.fail(intent_id, reason=SIMULATED_FAILURE_REASON, merchant_id=merchant_id)

    async def _transition(
        self,
        intent_id: str,
        target: PaymentIntentStatus,
        event_type: str,
        *,
        merchant_id: UUID | None,
        tx_id: str | None = None,
        customer_address: str | None = None,
        metadata_patch: dict[str, Any] | None = None,
    ) -> PaymentIntent:
        current = await self.get_intent(intent_id, merchant_id)
        validate_payment_intent_transition(current.status, target)

        async with self._repository.transaction():
            updated = await self._repository.transition(
                intent_id,
                from_statuses=allowed_sources(target),
                to_status=target,
                tx_id=tx_id,
                customer_address=customer_address,
                metadata_patch=metadata_patch,
            )
            if updated is None:
                # lost the race against another trigger for the same intent
                latest = await self._repository.get(intent_id)
                validate_payment_intent_transition(latest.status, target)
                raise InvalidStateError(f"Payment intent {intent_id} changed concurrently")
            events = await self._emitter.emit(
                merchant_id=updated.merchant_id,
                event_type=event_type,
                payload=updated.to_payload(),
                payment_intent_id=updated.id,
                notify=False,
            )

        if events:
            self._emitter.notify()
        logger.info(
            "payment intent transitioned",
            payment_intent_id=intent_id,
            from_status=current.status.value,
            to_status=target.value,
            event_type=event_type,
            tx_id=updated.tx_id,
        )
        return updated
