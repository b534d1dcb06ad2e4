"""Request DTOs validated at the HTTP boundary."""
from __future__ import annotations

from decimal import Decimal
from typing import Any
from pydantic import BaseModel, Field, field_validator

from sbtc_gateway.domain.enums import WILDCARD_EVENT, WebhookEventType

_SUBSCRIBABLE = {event.value for event in WebhookEventType} | {WILDCARD_EVENT}


def _normalize_events(values: list[str]) -> list[str]:
    events = [value.strip() for value in values if value and value.strip()]
    events = list(dict.fromkeys(events))
    if not events:
        raise ValueError("events must be a non-empty list")
    unknown = [event for event in events if event not in _SUBSCRIBABLE]
    if unknown:
        raise ValueError(f"Unknown event types: {', '.join(unknown)}")
    return events


class PaymentIntentCreateDTO(BaseModel):
    amount: int = Field(gt=0)
    amount_usd: Decimal | None = Field(default=None, ge=0)
    currency: str = "sbtc"
    description: str | None = None
    customer_address: str | None = None
    customer_email: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PaymentIntentMetadataDTO(BaseModel):
    metadata: dict[str, Any]


class PaymentIntentConfirmDTO(BaseModel):
    payment_method: str | None = None
    customer_address: str | None = None


class PaymentIntentSettleDTO(BaseModel):
    """Client-reported settlement of an intent by an on-chain transaction."""

    tx_id: str = Field(min_length=1)
    customer_address: str | None = None


class CheckTransactionDTO(BaseModel):
    payment_intent_id: str = Field(alias="paymentIntentId", min_length=1)


class WebhookEndpointCreateDTO(BaseModel):
    url: str = Field(min_length=1)
    description: str | None = None
    events: list[str] = Field(min_length=1)
    active: bool = True

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return value

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str]) -> list[str]:
        return _normalize_events(value)


class WebhookEndpointUpdateDTO(BaseModel):
    url: str | None = None
    description: str | None = None
    events: list[str] | None = None
    active: bool | None = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return value

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return _normalize_events(value)
