"""Common exceptions for domain, repository and delivery layers."""
from __future__ import annotations


class GatewayError(Exception):
    """Base error for the gateway service layer."""


class RepositoryError(GatewayError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class InvalidStateError(GatewayError):
    """Raised when a transition is attempted from a disallowed source state."""


class ConfigurationError(GatewayError):
    """Raised when merchant configuration needed by an operation is missing."""


class ExplorerError(GatewayError):
    """Raised when the block explorer cannot be queried or returns garbage."""


class DeliveryError(GatewayError):
    """Raised inside the delivery engine when a webhook attempt fails.

    Never propagated to the caller that emitted the event; the outcome is
    recorded on the event row instead.
    """

    def __init__(self, message: str, *, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body


class SignatureVerificationError(GatewayError):
    """Raised when an inbound webhook signature does not verify."""
