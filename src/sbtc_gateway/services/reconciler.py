"""Chain reconciler: match on-chain sBTC transfers to payment intents."""
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import structlog

from sbtc_gateway.chain.clarity import TransferCall
from sbtc_gateway.chain.explorer import BlockExplorer
from sbtc_gateway.core.exceptions import ConfigurationError, InvalidStateError
from sbtc_gateway.domain.enums import PaymentIntentStatus
from sbtc_gateway.domain.models import PaymentIntent
from sbtc_gateway.repositories.merchants import MerchantRepository
from sbtc_gateway.services.payment_intents import PaymentIntentService

logger = structlog.get_logger(__name__)

RECONCILABLE_STATUSES = frozenset({PaymentIntentStatus.CREATED, PaymentIntentStatus.PENDING})


@dataclass(frozen=True)
class ReconciliationResult:
    status: PaymentIntentStatus
    message: str
    tx_id: str | None = None
    checked_transactions: int = 0

    def to_dict(self) -> dict:
        data: dict = {"status": self.status.value, "message": self.message}
        if self.tx_id is not None:
            data["txId"] = self.tx_id
        if self.status != PaymentIntentStatus.SUCCEEDED:
            data["checkedTransactions"] = self.checked_transactions
        return data


def transfer_matches(intent: PaymentIntent, transfer: TransferCall, receiving_address: str) -> bool:
    """Recipient, exact base-unit amount and memo containing the intent id."""
    return (
        transfer.recipient == receiving_address
        and transfer.amount == intent.amount
        and transfer.memo_contains(intent.id)
    )


class ChainReconciler:
    """Looks for a settlement transfer for one intent and drives ``settle``.

    Read-only against the explorer; the only write it can cause is the single
    allowed ``settle`` transition, so repeated calls are safe.
    """

    def __init__(
        self,
        intents: PaymentIntentService,
        merchant_repository: MerchantRepository,
        explorer: BlockExplorer,
        *,
        contract_id: str,
        page_size: int = 20,
    ):
        self._intents = intents
        self._merchants = merchant_repository
        self._explorer = explorer
        self._contract_id = contract_id
        self._page_size = page_size

    async def reconcile(
        self, intent_id: str, merchant_id: UUID | None = None
    ) -> ReconciliationResult:
        intent = await self._intents.get_intent(intent_id, merchant_id)
        merchant = await self._merchants.get(intent.merchant_id)
        address = merchant.receiving_address
        if not address:
            raise ConfigurationError("Merchant has no receiving address configured")

        if intent.status == PaymentIntentStatus.SUCCEEDED:
            return ReconciliationResult(
                status=PaymentIntentStatus.SUCCEEDED,
                message="Payment already completed",
                tx_id=intent.tx_id,
            )
        if intent.status not in RECONCILABLE_STATUSES:
            raise InvalidStateError(f"Payment intent is {intent.status.value}")

        transactions = await self._explorer.list_address_transactions(
            address, limit=self._page_size
        )
        candidates = [tx for tx in transactions if tx.is_settlement_transfer(self._contract_id)]

        for tx in candidates:
            transfer = tx.as_transfer()
            if transfer is None or not transfer_matches(intent, transfer, address):
                continue
            logger.info(
                "reconciler: matching transfer found",
                payment_intent_id=intent.id,
                tx_id=transfer.tx_id,
                amount=transfer.amount,
                sender=transfer.sender,
            )
            return await self._settle(intent, transfer, len(candidates))

        logger.info(
            "reconciler: no matching transfer",
            payment_intent_id=intent.id,
            address=address,
            checked=len(candidates),
        )
        return ReconciliationResult(
            status=PaymentIntentStatus.PENDING,
            message="Payment not yet detected. Please wait for blockchain confirmation.",
            checked_transactions=len(candidates),
        )

    async def _settle(
        self, intent: PaymentIntent, transfer: TransferCall, checked: int
    ) -> ReconciliationResult:
        try:
            settled = await self._intents.settle(
                intent.id, tx_id=transfer.tx_id, customer_address=transfer.sender
            )
        except InvalidStateError:
            # a concurrent trigger may have settled the intent first
            latest = await self._intents.get_intent(intent.id)
            if latest.status != PaymentIntentStatus.SUCCEEDED:
                raise
            settled = latest
        return ReconciliationResult(
            status=PaymentIntentStatus.SUCCEEDED,
            message="Payment verified and completed",
            tx_id=settled.tx_id,
            checked_transactions=checked,
        )
