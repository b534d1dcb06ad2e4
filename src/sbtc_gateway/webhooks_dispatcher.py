"""Webhook delivery engine and the background dispatcher that drives it.

Emission only writes rows to ``webhook_events``. The dispatcher task wakes up
when an emitter signals new work (or every ``webhook_dispatch_interval_seconds``),
claims due events and performs one signed POST per claimed event.
"""
from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timedelta, timezone

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout, web

from sbtc_gateway.core.exceptions import DeliveryError, NotFoundError
from sbtc_gateway.domain.webhooks import WebhookEndpoint, WebhookEvent
from sbtc_gateway.otel import get_tracer
from sbtc_gateway.repositories import get_repositories
from sbtc_gateway.repositories.webhooks import (
    WebhookEndpointRepository,
    WebhookEventRepository,
)
from sbtc_gateway.services.signing import (
    EVENT_ID_HEADER,
    EVENT_TYPE_HEADER,
    SIGNATURE_HEADER,
    sign,
)
from sbtc_gateway.settings import settings

logger = structlog.get_logger(__name__)

USER_AGENT = "SBTC-Webhooks/1.0"

_WEBHOOK_SESSION_KEY = "webhook_http_session"
_WEBHOOK_TASK_KEY = "webhook_dispatcher_task"
DISPATCH_SIGNAL_KEY = "webhook_dispatch_signal"


def backoff_seconds(attempts: int, *, base: float, cap: float) -> float:
    """Delay before the next attempt after ``attempts`` failed ones."""
    return min(cap, base * 2 ** max(attempts, 0))


class DispatchSignal:
    """Wake-up flag shared by emitters (producers) and the dispatcher loop."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Wait for a signal or ``timeout``. Returns True when signalled."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        self._event.clear()
        return True


class WebhookDeliveryEngine:
    """Claims events, signs and sends them, and records every outcome.

    ``attempts`` is incremented by the claim itself, so a crash mid-attempt
    still counts; the claim (``locked_at``) keeps a second sweep from
    attempting the same event concurrently.
    """

    def __init__(
        self,
        events: WebhookEventRepository,
        endpoints: WebhookEndpointRepository,
        session: ClientSession,
        *,
        max_attempts: int = 5,
        request_timeout_seconds: float = 10.0,
        backoff_base_seconds: float = 30.0,
        backoff_max_seconds: float = 3600.0,
        response_body_max_chars: int = 1000,
        max_concurrency: int = 10,
    ):
        self._events = events
        self._endpoints = endpoints
        self._session = session
        self.max_attempts = max_attempts
        self._timeout = ClientTimeout(total=request_timeout_seconds)
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._body_max_chars = response_body_max_chars
        self._max_concurrency = max_concurrency

    async def sweep(self, now: datetime | None = None, *, limit: int = 100) -> int:
        """Attempt every due event once. Returns the number of attempts made.

        Each attempt is stamped with its own start time unless ``now`` pins the
        clock for the whole sweep.
        """
        pinned = now is not None
        now = now or datetime.now(timezone.utc)
        claimed = await self._events.claim_due(
            now=now, max_attempts=self.max_attempts, limit=limit
        )
        if not claimed:
            return 0

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(event: WebhookEvent) -> None:
            async with semaphore:
                await self._attempt(event, now if pinned else datetime.now(timezone.utc))

        await asyncio.gather(*(_bounded(event) for event in claimed))
        return len(claimed)

    async def deliver_now(
        self, event_id: str, now: datetime | None = None
    ) -> WebhookEvent | None:
        """Attempt one event immediately if it is eligible; None otherwise."""
        now = now or datetime.now(timezone.utc)
        event = await self._events.claim(event_id, now=now, max_attempts=self.max_attempts)
        if event is None:
            return None
        return await self._attempt(event, now)

    async def _attempt(self, event: WebhookEvent, now: datetime) -> WebhookEvent | None:
        status: int | None = None
        body: str | None = None
        error: str | None = None
        with get_tracer(__name__).start_as_current_span("webhook.deliver") as span:
            span.set_attribute("webhook.event_id", event.id)
            span.set_attribute("webhook.attempt", event.attempts)
            try:
                endpoint = await self._resolve_endpoint(event)
                status, body = await self._post(endpoint, event)
                if not 200 <= status < 300:
                    error = f"HTTP {status}"
            except DeliveryError as exc:
                status, body, error = exc.status, exc.body, str(exc)
            delivered = error is None

        next_retry_at = None
        if not delivered and event.attempts < self.max_attempts:
            next_retry_at = now + timedelta(
                seconds=backoff_seconds(
                    event.attempts, base=self._backoff_base, cap=self._backoff_max
                )
            )

        try:
            recorded = await self._events.record_attempt(
                event.id,
                delivered=delivered,
                attempted_at=now,
                next_retry_at=next_retry_at,
                response_status=status,
                response_body=body,
                last_error=error,
            )
        except NotFoundError:
            # endpoint deleted while the request was in flight
            logger.info("webhook event removed mid-attempt", event_id=event.id, status=status)
            return None

        log = logger.bind(
            event_id=event.id,
            event_type=event.event_type,
            endpoint_id=event.webhook_endpoint_id,
            attempts=recorded.attempts,
            status=status,
        )
        if delivered:
            log.info("webhook delivered")
        elif next_retry_at is None:
            log.warning("webhook abandoned", error=error)
        else:
            log.info("webhook attempt failed", error=error, next_retry_at=next_retry_at.isoformat())
        return recorded

    async def _resolve_endpoint(self, event: WebhookEvent) -> WebhookEndpoint:
        endpoint = None
        if event.webhook_endpoint_id is not None:
            endpoint = await self._endpoints.get_by_id(event.webhook_endpoint_id)
        if endpoint is None:
            raise DeliveryError("Webhook endpoint no longer exists")
        if not endpoint.active:
            raise DeliveryError("Webhook endpoint is disabled")
        return endpoint

    async def _post(self, endpoint: WebhookEndpoint, event: WebhookEvent) -> tuple[int, str]:
        body_bytes = json.dumps(
            event.to_body(), separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            SIGNATURE_HEADER: sign(body_bytes, endpoint.secret, int(time.time())),
            EVENT_ID_HEADER: event.id,
            EVENT_TYPE_HEADER: event.event_type,
        }
        try:
            async with self._session.post(
                endpoint.url,
                data=body_bytes,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text(errors="replace")
                return resp.status, text[: self._body_max_chars]
        except asyncio.TimeoutError as exc:
            raise DeliveryError("Webhook request timed out") from exc
        except ClientError as exc:
            raise DeliveryError(f"Webhook request failed: {exc!r}") from exc


async def _dispatcher_loop(
    engine: WebhookDeliveryEngine,
    signal: DispatchSignal,
    *,
    interval_seconds: float,
    batch_size: int,
) -> None:
    logger.info("webhook dispatcher started", interval_seconds=interval_seconds)
    while True:
        try:
            await signal.wait(interval_seconds)
            # keep draining while full batches come back
            while await engine.sweep(limit=batch_size) >= batch_size:
                pass
        except asyncio.CancelledError:
            logger.info("webhook dispatcher stopped")
            raise
        except Exception:
            logger.exception("webhook dispatcher sweep failed")
            await asyncio.sleep(interval_seconds)


async def start_webhook_dispatcher(app: web.Application) -> None:
    """Build the delivery engine and start the dispatcher task (``on_startup``)."""
    repositories = get_repositories(app)
    session = ClientSession()
    engine = WebhookDeliveryEngine(
        repositories.webhook_events,
        repositories.webhook_endpoints,
        session,
        max_attempts=settings.webhook_max_attempts,
        request_timeout_seconds=settings.webhook_request_timeout_seconds,
        backoff_base_seconds=settings.webhook_backoff_base_seconds,
        backoff_max_seconds=settings.webhook_backoff_max_seconds,
        response_body_max_chars=settings.webhook_response_body_max_chars,
        max_concurrency=settings.webhook_dispatch_max_concurrency,
    )
    app[_WEBHOOK_SESSION_KEY] = session
    app[_WEBHOOK_TASK_KEY] = asyncio.create_task(
        _dispatcher_loop(
            engine,
            app[DISPATCH_SIGNAL_KEY],
            interval_seconds=settings.webhook_dispatch_interval_seconds,
            batch_size=settings.webhook_dispatch_batch_size,
        )
    )


async def stop_webhook_dispatcher(app: web.Application) -> None:
    task = app.get(_WEBHOOK_TASK_KEY)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    session = app.get(_WEBHOOK_SESSION_KEY)
    if session is not None:
        await session.close()
