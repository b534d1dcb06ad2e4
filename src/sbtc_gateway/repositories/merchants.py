"""Merchant repository (read-only; merchants are managed elsewhere)."""
from __future__ import annotations

from uuid import UUID

from sbtc_gateway.core.exceptions import NotFoundError
from sbtc_gateway.domain.models import Merchant
from sbtc_gateway.repositories.base import BaseRepository


class MerchantRepository(BaseRepository):
    async def get(self, merchant_id: UUID) -> Merchant:
        record = await self._fetchrow(
            """
            SELECT id, name, stacks_address, recipient_address, created_at
            FROM merchants
            WHERE id = $1
            """,
            merchant_id,
        )
        if record is None:
            raise NotFoundError("Merchant not found")
        return Merchant.model_validate(dict(record))
