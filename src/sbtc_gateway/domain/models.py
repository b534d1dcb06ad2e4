"""Pydantic models for merchants and payment intents."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from sbtc_gateway.domain.enums import PaymentIntentStatus


class Merchant(BaseModel):
    id: UUID
    name: str
    stacks_address: str | None = None
    recipient_address: str | None = None
    created_at: datetime | None = None

    @property
    def receiving_address(self) -> str | None:
        """Explicit recipient override, else the merchant's default address."""
        return self.recipient_address or self.stacks_address


class PaymentIntent(BaseModel):
    id: str
    merchant_id: UUID
    amount: int = Field(gt=0)  # base units (micro-sBTC)
    amount_usd: Decimal | None = None
    currency: str = "sbtc"
    status: PaymentIntentStatus = PaymentIntentStatus.CREATED
    description: str | None = None
    customer_address: str | None = None
    customer_email: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    tx_id: str | None = None
    created_at: datetime
    updated_at: datetime

    def to_payload(self) -> dict[str, Any]:
        """Public representation, also used as the webhook payload snapshot."""
        return {
            "id": self.id,
            "object": "payment_intent",
            "amount": self.amount,
            "amount_usd": float(self.amount_usd) if self.amount_usd is not None else None,
            "currency": self.currency,
            "status": self.status.value,
            "customer_address": self.customer_address,
            "customer_email": self.customer_email,
            "description": self.description,
            "metadata": dict(self.metadata),
            "tx_id": self.tx_id,
            "created": int(self.created_at.timestamp()),
        }
