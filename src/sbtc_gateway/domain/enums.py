"""Domain enums for payment intents and webhook events."""
from __future__ import annotations

from enum import Enum


class PaymentIntentStatus(str, Enum):
    """Payment intent lifecycle states."""

    CREATED = "created"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {PaymentIntentStatus.SUCCEEDED, PaymentIntentStatus.FAILED, PaymentIntentStatus.CANCELED}
)


class WebhookEventType(str, Enum):
    """Event types a webhook endpoint can subscribe to."""

    PAYMENT_INTENT_CREATED = "payment_intent.created"
    PAYMENT_INTENT_PENDING = "payment_intent.pending"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.failed"
    PAYMENT_INTENT_CANCELED = "payment_intent.canceled"


# Subscribing to "*" receives every event type.
WILDCARD_EVENT = "*"


class DeliveryState(str, Enum):
    """Derived delivery state of a webhook event (not stored)."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    ABANDONED = "abandoned"
