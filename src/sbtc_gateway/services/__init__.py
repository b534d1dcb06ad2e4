"""Domain services exports."""

from sbtc_gateway.services.payment_intents import PaymentIntentService
from sbtc_gateway.services.reconciler import ChainReconciler
from sbtc_gateway.services.webhooks import WebhookEmitter, WebhookService

__all__ = [
    "PaymentIntentService",
    "ChainReconciler",
    "WebhookEmitter",
    "WebhookService",
]
