"""Payment intent status transition table."""
from __future__ import annotations

from sbtc_gateway.core.exceptions import InvalidStateError
from sbtc_gateway.domain.enums import PaymentIntentStatus

PAYMENT_INTENT_TRANSITIONS: dict[PaymentIntentStatus, set[PaymentIntentStatus]] = {
    PaymentIntentStatus.CREATED: {
        PaymentIntentStatus.PENDING,
        PaymentIntentStatus.SUCCEEDED,
        PaymentIntentStatus.FAILED,
        PaymentIntentStatus.CANCELED,
    },
    PaymentIntentStatus.PENDING: {
        PaymentIntentStatus.SUCCEEDED,
        PaymentIntentStatus.FAILED,
        PaymentIntentStatus.CANCELED,
    },
    PaymentIntentStatus.SUCCEEDED: set(),
    PaymentIntentStatus.FAILED: set(),
    PaymentIntentStatus.CANCELED: set(),
}


def allowed_sources(target: PaymentIntentStatus) -> frozenset[PaymentIntentStatus]:
    """Statuses from which ``target`` can be reached in one step."""
    return frozenset(
        source for source, targets in PAYMENT_INTENT_TRANSITIONS.items() if target in targets
    )


def validate_payment_intent_transition(
    current: PaymentIntentStatus, new: PaymentIntentStatus
) -> None:
    if current.is_terminal:
        raise InvalidStateError(f"Payment intent is already {current.value}")
    # same-status "transitions" are rejected too: a second settle must fail
    if new not in PAYMENT_INTENT_TRANSITIONS.get(current, set()):
        raise InvalidStateError(
            f"Invalid payment intent status transition: {current.value} → {new.value}"
        )
