"""Webhook repositories (endpoints + event outbox)."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Tuple
from uuid import UUID

from asyncpg import Record  # type: ignore[import-untyped]

from sbtc_gateway.core.exceptions import NotFoundError
from sbtc_gateway.domain.enums import WILDCARD_EVENT
from sbtc_gateway.domain.webhooks import WebhookEndpoint, WebhookEvent
from sbtc_gateway.repositories.base import BaseRepository, affected_rows


class WebhookEndpointRepository(BaseRepository):
    @staticmethod
    def _to_model(record: Record) -> WebhookEndpoint:
        return WebhookEndpoint.model_validate(dict(record))

    async def create(
        self,
        *,
        endpoint_id: str,
        merchant_id: UUID,
        url: str,
        events: list[str],
        secret: str,
        description: str | None = None,
        active: bool = True,
    ) -> WebhookEndpoint:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_endpoints (id, merchant_id, url, description, events, active, secret)
            VALUES ($1, $2, $3, $4, $5::text[], $6, $7)
            RETURNING *
            """,
            endpoint_id,
            merchant_id,
            url,
            description,
            events,
            active,
            secret,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, merchant_id: UUID, endpoint_id: str) -> WebhookEndpoint:
        record = await self._fetchrow(
            "SELECT * FROM webhook_endpoints WHERE merchant_id = $1 AND id = $2",
            merchant_id,
            endpoint_id,
        )
        if record is None:
            raise NotFoundError("Webhook endpoint not found")
        return self._to_model(record)

    async def get_by_id(self, endpoint_id: str) -> WebhookEndpoint | None:
        record = await self._fetchrow("SELECT * FROM webhook_endpoints WHERE id = $1", endpoint_id)
        return self._to_model(record) if record is not None else None

    async def list_by_merchant(self, merchant_id: UUID) -> List[WebhookEndpoint]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_endpoints
            WHERE merchant_id = $1
            ORDER BY created_at DESC
            """,
            merchant_id,
        )
        return [self._to_model(r) for r in records]

    async def update(
        self,
        merchant_id: UUID,
        endpoint_id: str,
        *,
        url: str | None = None,
        description: str | None = None,
        events: list[str] | None = None,
        active: bool | None = None,
    ) -> WebhookEndpoint:
        # secret is deliberately not updatable here
        record = await self._fetchrow(
            """
            UPDATE webhook_endpoints
            SET url = COALESCE($3, url),
                description = COALESCE($4, description),
                events = COALESCE($5::text[], events),
                active = COALESCE($6, active),
                updated_at = now()
            WHERE merchant_id = $1 AND id = $2
            RETURNING *
            """,
            merchant_id,
            endpoint_id,
            url,
            description,
            events,
            active,
        )
        if record is None:
            raise NotFoundError("Webhook endpoint not found")
        return self._to_model(record)

    async def delete(self, merchant_id: UUID, endpoint_id: str) -> None:
        """Delete the endpoint together with its undelivered events."""
        async with self.transaction():
            await self._execute(
                """
                DELETE FROM webhook_events
                WHERE webhook_endpoint_id = $1
                  AND merchant_id = $2
                  AND delivered = false
                """,
                endpoint_id,
                merchant_id,
            )
            record = await self._fetchrow(
                """
                DELETE FROM webhook_endpoints
                WHERE merchant_id = $1 AND id = $2
                RETURNING id
                """,
                merchant_id,
                endpoint_id,
            )
            if record is None:
                raise NotFoundError("Webhook endpoint not found")

    async def list_active_subscribed(
        self, merchant_id: UUID, event_type: str
    ) -> List[WebhookEndpoint]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_endpoints
            WHERE merchant_id = $1
              AND active = true
              AND ($2 = ANY(events) OR $3 = ANY(events))
            ORDER BY created_at ASC
            """,
            merchant_id,
            event_type,
            WILDCARD_EVENT,
        )
        return [self._to_model(r) for r in records]


class WebhookEventRepository(BaseRepository):
    @staticmethod
    def _to_model(record: Record) -> WebhookEvent:
        return WebhookEvent.model_validate(WebhookEventRepository._normalize(dict(record)))

    @staticmethod
    def _normalize(payload: dict[str, Any]) -> dict[str, Any]:
        value = payload.get("payload")
        if isinstance(value, str):
            payload["payload"] = json.loads(value)
        return payload

    async def enqueue(
        self,
        *,
        event_id: str,
        merchant_id: UUID,
        webhook_endpoint_id: str | None,
        event_type: str,
        payment_intent_id: str | None,
        payload: dict[str, Any],
    ) -> WebhookEvent:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_events (
                id,
                merchant_id,
                webhook_endpoint_id,
                event_type,
                payment_intent_id,
                payload,
                delivered,
                attempts
            )
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, false, 0)
            RETURNING *
            """,
            event_id,
            merchant_id,
            webhook_endpoint_id,
            event_type,
            payment_intent_id,
            json.dumps(payload),
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, event_id: str, merchant_id: UUID | None = None) -> WebhookEvent:
        if merchant_id is None:
            record = await self._fetchrow("SELECT * FROM webhook_events WHERE id = $1", event_id)
        else:
            record = await self._fetchrow(
                "SELECT * FROM webhook_events WHERE id = $1 AND merchant_id = $2",
                event_id,
                merchant_id,
            )
        if record is None:
            raise NotFoundError("Webhook event not found")
        return self._to_model(record)

    async def list_by_merchant(
        self,
        merchant_id: UUID,
        *,
        event_type: str | None = None,
        endpoint_id: str | None = None,
        delivered: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookEvent], int]:
        where = ["merchant_id = $1"]
        values: list[Any] = [merchant_id]
        idx = 2
        for column, value in (
            ("event_type", event_type),
            ("webhook_endpoint_id", endpoint_id),
            ("delivered", delivered),
        ):
            if value is not None:
                where.append(f"{column} = ${idx}")
                values.append(value)
                idx += 1
        where_sql = " AND ".join(where)
        query = f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_events
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """
        values.extend([limit, offset])
        records = await self._fetch(query, *values)
        items: List[WebhookEvent] = []
        total = 0
        for rec in records:
            rec_dict = dict(rec)
            total = int(rec_dict.pop("total_count", 0) or 0)
            items.append(WebhookEvent.model_validate(self._normalize(rec_dict)))
        if not items and offset:
            count = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM webhook_events WHERE {where_sql}",
                *values[:-2],
            )
            total = int(count["total"]) if count else 0
        return items, total

    async def claim_due(
        self, *, now: datetime, max_attempts: int, limit: int = 100
    ) -> List[WebhookEvent]:
        """
        Atomically claim due events for one delivery attempt each.

        Uses row-level locking (FOR UPDATE SKIP LOCKED) so concurrent sweeps
        never attempt the same event twice.

        Side-effects:
          - attempts += 1
          - locked_at -> now
          - next_retry_at -> NULL
        """
        async with self._connection() as conn:
            async with conn.transaction():
                records = await conn.fetch(
                    """
                    WITH cte AS (
                        SELECT id
                        FROM webhook_events
                        WHERE delivered = false
                          AND locked_at IS NULL
                          AND attempts < $2
                          AND (next_retry_at IS NULL OR next_retry_at <= $1)
                        ORDER BY created_at ASC
                        FOR UPDATE SKIP LOCKED
                        LIMIT $3
                    )
                    UPDATE webhook_events e
                    SET attempts = e.attempts + 1,
                        locked_at = $1,
                        next_retry_at = NULL
                    FROM cte
                    WHERE e.id = cte.id
                    RETURNING e.*
                    """,
                    now,
                    max_attempts,
                    limit,
                )
        return [self._to_model(r) for r in records]

    async def claim(
        self, event_id: str, *, now: datetime, max_attempts: int
    ) -> WebhookEvent | None:
        """Claim a single event if it is eligible right now."""
        record = await self._fetchrow(
            """
            UPDATE webhook_events
            SET attempts = attempts + 1,
                locked_at = $2,
                next_retry_at = NULL
            WHERE id = $1
              AND delivered = false
              AND locked_at IS NULL
              AND attempts < $3
              AND (next_retry_at IS NULL OR next_retry_at <= $2)
            RETURNING *
            """,
            event_id,
            now,
            max_attempts,
        )
        return self._to_model(record) if record is not None else None

    async def record_attempt(
        self,
        event_id: str,
        *,
        delivered: bool,
        attempted_at: datetime,
        next_retry_at: datetime | None,
        response_status: int | None,
        response_body: str | None,
        last_error: str | None,
    ) -> WebhookEvent:
        record = await self._fetchrow(
            """
            UPDATE webhook_events
            SET delivered = delivered OR $2,
                last_attempted_at = $3,
                next_retry_at = CASE WHEN delivered OR $2 THEN NULL ELSE $4 END,
                response_status = $5,
                response_body = $6,
                last_error = $7,
                locked_at = NULL
            WHERE id = $1
            RETURNING *
            """,
            event_id,
            delivered,
            attempted_at,
            next_retry_at,
            response_status,
            response_body,
            last_error,
        )
        if record is None:
            raise NotFoundError("Webhook event not found")
        return self._to_model(record)

    async def clear_retry(self, merchant_id: UUID, event_id: str) -> WebhookEvent:
        """Operator retry: make the event due immediately. Never touches attempts."""
        record = await self._fetchrow(
            """
            UPDATE webhook_events
            SET next_retry_at = NULL
            WHERE id = $1 AND merchant_id = $2
            RETURNING *
            """,
            event_id,
            merchant_id,
        )
        if record is None:
            raise NotFoundError("Webhook event not found")
        return self._to_model(record)

    async def reclaim_stuck(self, locked_before: datetime) -> int:
        """Release claims left behind by a crashed attempt.

        The attempt already counted at claim time stays counted.
        Returns the number of reclaimed rows.
        """
        result = await self._execute(
            """
            UPDATE webhook_events
            SET locked_at = NULL,
                next_retry_at = NULL
            WHERE delivered = false
              AND locked_at IS NOT NULL
              AND locked_at < $1
            """,
            locked_before,
        )
        return affected_rows(result)

    async def delete_old_delivered(self, created_before: datetime) -> int:
        """Purge delivered events older than *created_before*. Returns count."""
        result = await self._execute(
            "DELETE FROM webhook_events WHERE delivered = true AND created_at < $1",
            created_before,
        )
        return affected_rows(result)
