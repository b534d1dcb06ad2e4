"""Prefixed opaque identifiers."""
from __future__ import annotations

import secrets

PAYMENT_INTENT_PREFIX = "pi"
WEBHOOK_EVENT_PREFIX = "evt"
WEBHOOK_ENDPOINT_PREFIX = "we"


def new_id(prefix: str) -> str:
    # 12 random bytes -> 16 url-safe characters
    return f"{prefix}_{secrets.token_urlsafe(12)}"


def new_payment_intent_id() -> str:
    return new_id(PAYMENT_INTENT_PREFIX)


def new_event_id() -> str:
    return new_id(WEBHOOK_EVENT_PREFIX)


def new_endpoint_id() -> str:
    return new_id(WEBHOOK_ENDPOINT_PREFIX)


def new_mock_tx_id() -> str:
    """Synthetic settlement tx id for the manual test path."""
    return f"0x{secrets.token_hex(32)}"
