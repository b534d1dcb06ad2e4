"""Payment intent repository."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, List
from uuid import UUID

from asyncpg import Record  # type: ignore[import-untyped]

from sbtc_gateway.core.exceptions import NotFoundError
from sbtc_gateway.domain.enums import PaymentIntentStatus
from sbtc_gateway.domain.models import PaymentIntent
from sbtc_gateway.repositories.base import BaseRepository


class PaymentIntentRepository(BaseRepository):
    """Persistence for payment intents.

    Status changes only go through :meth:`transition`, a compare-and-swap on
    the current status, so two concurrent triggers for the same intent can
    never both win.
    """

    @staticmethod
    def _to_model(record: Record) -> PaymentIntent:
        payload = dict(record)
        metadata = payload.get("metadata")
        if isinstance(metadata, str):
            payload["metadata"] = json.loads(metadata)
        elif metadata is None:
            payload["metadata"] = {}
        return PaymentIntent.model_validate(payload)

    async def create(
        self,
        *,
        intent_id: str,
        merchant_id: UUID,
        amount: int,
        amount_usd: Any = None,
        currency: str = "sbtc",
        description: str | None = None,
        customer_address: str | None = None,
        customer_email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentIntent:
        record = await self._fetchrow(
            """
            INSERT INTO payment_intents (
                id,
                merchant_id,
                amount,
                amount_usd,
                currency,
                status,
                description,
                customer_address,
                customer_email,
                metadata
            )
            VALUES ($1, $2, $3, $4, $5, 'created', $6, $7, $8, $9::jsonb)
            RETURNING *
            """,
            intent_id,
            merchant_id,
            amount,
            amount_usd,
            currency,
            description,
            customer_address,
            customer_email,
            json.dumps(metadata or {}),
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, intent_id: str) -> PaymentIntent:
        record = await self._fetchrow("SELECT * FROM payment_intents WHERE id = $1", intent_id)
        if record is None:
            raise NotFoundError("Payment intent not found")
        return self._to_model(record)

    async def transition(
        self,
        intent_id: str,
        *,
        from_statuses: Iterable[PaymentIntentStatus],
        to_status: PaymentIntentStatus,
        tx_id: str | None = None,
        customer_address: str | None = None,
        metadata_patch: dict[str, Any] | None = None,
    ) -> PaymentIntent | None:
        """Move the intent to ``to_status`` if it is currently in ``from_statuses``.

        Returns None (and changes nothing) when the guard does not hold.
        """
        record = await self._fetchrow(
            """
            UPDATE payment_intents
            SET status = $3,
                tx_id = COALESCE($4, tx_id),
                customer_address = COALESCE($5, customer_address),
                metadata = COALESCE(metadata, '{}'::jsonb) || $6::jsonb,
                updated_at = now()
            WHERE id = $1
              AND status = ANY($2::text[])
              AND tx_id IS NULL
            RETURNING *
            """,
            intent_id,
            [status.value for status in from_statuses],
            to_status.value,
            tx_id,
            customer_address,
            json.dumps(metadata_patch or {}),
        )
        return self._to_model(record) if record is not None else None

    async def merge_metadata(self, intent_id: str, patch: dict[str, Any]) -> PaymentIntent:
        """Additive metadata update: keys in ``patch`` overwrite, others are kept."""
        record = await self._fetchrow(
            """
            UPDATE payment_intents
            SET metadata = COALESCE(metadata, '{}'::jsonb) || $2::jsonb,
                updated_at = now()
            WHERE id = $1
            RETURNING *
            """,
            intent_id,
            json.dumps(patch),
        )
        if record is None:
            raise NotFoundError("Payment intent not found")
        return self._to_model(record)

    async def list_reconcilable(
        self,
        *,
        statuses: Iterable[PaymentIntentStatus],
        updated_after: datetime,
        limit: int,
    ) -> List[PaymentIntent]:
        records = await self._fetch(
            """
            SELECT *
            FROM payment_intents
            WHERE status = ANY($1::text[])
              AND updated_at >= $2
            ORDER BY updated_at ASC
            LIMIT $3
            """,
            [status.value for status in statuses],
            updated_after,
            limit,
        )
        return [self._to_model(r) for r in records]
