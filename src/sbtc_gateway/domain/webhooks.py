"""Webhook domain primitives."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from sbtc_gateway.domain.enums import DeliveryState


class WebhookEndpoint(BaseModel):
    id: str
    merchant_id: UUID
    url: str
    description: str | None = None
    events: list[str] = Field(min_length=1)
    active: bool = True
    secret: str
    created_at: datetime
    updated_at: datetime

    def to_public(self, *, include_secret: bool = False) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"secret"})
        if include_secret:
            data["secret"] = self.secret
        return data


class WebhookEvent(BaseModel):
    id: str
    merchant_id: UUID
    webhook_endpoint_id: str | None = None
    event_type: str
    payment_intent_id: str | None = None
    payload: dict[str, Any]
    delivered: bool = False
    attempts: int = 0
    last_attempted_at: datetime | None = None
    next_retry_at: datetime | None = None
    locked_at: datetime | None = None
    response_status: int | None = None
    response_body: str | None = None
    last_error: str | None = None
    created_at: datetime

    def delivery_state(self, max_attempts: int) -> DeliveryState:
        if self.delivered:
            return DeliveryState.DELIVERED
        if self.locked_at is not None:
            return DeliveryState.IN_FLIGHT
        if self.attempts >= max_attempts:
            return DeliveryState.ABANDONED
        return DeliveryState.PENDING

    def to_body(self) -> dict[str, Any]:
        """Outbound JSON body sent to the merchant endpoint."""
        return {
            "id": self.id,
            "type": self.event_type,
            "data": {"object": self.payload},
            "created": int(self.created_at.timestamp()),
        }

    def to_public(self, max_attempts: int) -> dict[str, Any]:
        """Operator-facing listing entry with delivery diagnostics."""
        return {
            "id": self.id,
            "type": self.event_type,
            "payment_intent_id": self.payment_intent_id,
            "endpoint_id": self.webhook_endpoint_id,
            "data": {"object": self.payload},
            "delivered": self.delivered,
            "attempts": self.attempts,
            "state": self.delivery_state(max_attempts).value,
            "last_attempted": _epoch(self.last_attempted_at),
            "next_retry": _epoch(self.next_retry_at),
            "response_status": self.response_status,
            "response_body": self.response_body,
            "last_error": self.last_error,
            "created": _epoch(self.created_at),
        }


def _epoch(value: datetime | None) -> int | None:
    return int(value.timestamp()) if value is not None else None
