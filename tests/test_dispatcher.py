from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from aiohttp import ClientSession, web
from multidict import CIMultiDict

from sbtc_gateway.core.exceptions import InvalidStateError
from sbtc_gateway.domain.enums import DeliveryState
from sbtc_gateway.services.signing import verify
from sbtc_gateway.webhooks_dispatcher import (
    WebhookDeliveryEngine,
    _dispatcher_loop,
    backoff_seconds,
)

T0 = datetime(2030, 1, 1, tzinfo=timezone.utc)


class Receiver:
    """Merchant endpoint that answers with a scripted list of statuses."""

    def __init__(self, statuses=(), delay: float = 0.0):
        self.statuses = list(statuses)
        self.delay = delay
        self.requests: list[tuple[CIMultiDict, bytes]] = []
        self.received = asyncio.Event()

    async def handle(self, request: web.Request) -> web.Response:
        raw = await request.read()
        self.requests.append((request.headers.copy(), raw))
        self.received.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        status = self.statuses.pop(0) if self.statuses else 200
        return web.Response(status=status, text=f"status {status}")


@pytest.fixture
def start_receiver(aiohttp_server):
    async def _start(statuses=(), delay: float = 0.0):
        receiver = Receiver(statuses, delay)
        app = web.Application()
        app.router.add_post("/hook", receiver.handle)
        server = await aiohttp_server(app)
        return receiver, str(server.make_url("/hook"))

    return _start


@pytest.fixture
async def http_session():
    async with ClientSession() as session:
        yield session


@pytest.fixture
def make_engine(repositories, http_session):
    def _make(**options):
        return WebhookDeliveryEngine(
            repositories.webhook_events,
            repositories.webhook_endpoints,
            http_session,
            **options,
        )

    return _make


async def _emit(emitter, merchant, endpoint):
    events = await emitter.emit(
        merchant_id=merchant.id,
        event_type="payment_intent.succeeded",
        payload={"id": "pi_1", "status": "succeeded", "amount": 50000},
        endpoint_id=endpoint.id,
    )
    return events[0]


async def test_delivery_is_signed(start_receiver, add_endpoint, emitter, merchant, make_engine, store):
    receiver, url = await start_receiver([200])
    endpoint = await add_endpoint(url=url)
    event = await _emit(emitter, merchant, endpoint)

    assert await make_engine().sweep(T0) == 1

    headers, raw = receiver.requests[0]
    assert verify(raw, headers["X-SBTC-Signature"], endpoint.secret)
    assert headers["X-SBTC-Event-Id"] == event.id
    assert headers["X-SBTC-Event-Type"] == "payment_intent.succeeded"
    assert headers["User-Agent"] == "SBTC-Webhooks/1.0"
    body = json.loads(raw)
    assert body["id"] == event.id
    assert body["type"] == "payment_intent.succeeded"
    assert body["data"]["object"]["id"] == "pi_1"
    assert isinstance(body["created"], int)

    stored = store.events[event.id]
    assert stored.delivered
    assert stored.attempts == 1
    assert stored.next_retry_at is None
    assert stored.response_status == 200
    assert stored.response_body == "status 200"
    assert stored.last_attempted_at == T0


async def test_eventual_success_on_fifth_attempt(
    start_receiver, add_endpoint, emitter, merchant, make_engine, store
):
    receiver, url = await start_receiver([500, 500, 500, 500, 200])
    endpoint = await add_endpoint(url=url)
    event = await _emit(emitter, merchant, endpoint)
    engine = make_engine()

    for attempt in range(1, 6):
        now = T0 + timedelta(hours=2 * attempt)
        assert await engine.sweep(now) == 1
        stored = store.events[event.id]
        assert stored.attempts == attempt

    assert stored.delivered
    assert stored.next_retry_at is None
    assert stored.response_status == 200
    assert await engine.sweep(T0 + timedelta(days=1)) == 0
    assert store.events[event.id].attempts == 5
    assert len(receiver.requests) == 5


async def test_abandoned_after_max_attempts(
    start_receiver, add_endpoint, emitter, merchant, make_engine, store
):
    receiver, url = await start_receiver([500] * 10)
    endpoint = await add_endpoint(url=url)
    event = await _emit(emitter, merchant, endpoint)
    engine = make_engine()

    previous = 0
    for attempt in range(1, 6):
        await engine.sweep(T0 + timedelta(hours=2 * attempt))
        stored = store.events[event.id]
        assert stored.attempts == previous + 1
        previous = stored.attempts

    assert stored.attempts == 5
    assert not stored.delivered
    assert stored.next_retry_at is None
    assert stored.response_status == 500
    assert stored.delivery_state(5) == DeliveryState.ABANDONED
    assert await engine.sweep(T0 + timedelta(days=30)) == 0
    assert len(receiver.requests) == 5


def test_backoff_is_monotonic_and_capped():
    delays = [backoff_seconds(k, base=30, cap=3600) for k in range(12)]
    assert delays[:4] == [30, 60, 120, 240]
    assert all(later >= earlier for earlier, later in zip(delays, delays[1:]))
    assert max(delays) == 3600


async def test_failed_attempt_schedules_backoff(
    start_receiver, add_endpoint, emitter, merchant, make_engine, store
):
    _, url = await start_receiver([500, 500])
    endpoint = await add_endpoint(url=url)
    event = await _emit(emitter, merchant, endpoint)
    engine = make_engine(backoff_base_seconds=30, backoff_max_seconds=3600)

    await engine.sweep(T0)
    first_retry = store.events[event.id].next_retry_at
    assert first_retry == T0 + timedelta(seconds=60)

    assert await engine.sweep(T0 + timedelta(seconds=59)) == 0

    await engine.sweep(first_retry)
    second_retry = store.events[event.id].next_retry_at
    assert second_retry == first_retry + timedelta(seconds=120)
    assert second_retry - first_retry > first_retry - T0


async def test_concurrent_sweeps_do_not_double_attempt(
    start_receiver, add_endpoint, emitter, merchant, make_engine, store
):
    receiver, url = await start_receiver([200], delay=0.05)
    endpoint = await add_endpoint(url=url)
    event = await _emit(emitter, merchant, endpoint)
    engine = make_engine()

    results = await asyncio.gather(engine.sweep(T0), engine.sweep(T0), engine.deliver_now(event.id, T0))

    assert results[0] + results[1] == 1
    assert results[2] is None
    assert len(receiver.requests) == 1
    assert store.events[event.id].attempts == 1


async def test_disabled_endpoint_counts_as_failure(add_endpoint, emitter, merchant, make_engine, store):
    endpoint = await add_endpoint(active=False)
    event = await _emit(emitter, merchant, endpoint)

    await make_engine().sweep(T0)

    stored = store.events[event.id]
    assert stored.attempts == 1
    assert not stored.delivered
    assert stored.last_error == "Webhook endpoint is disabled"
    assert stored.next_retry_at is not None


async def test_timeout_counts_as_failure(start_receiver, add_endpoint, emitter, merchant, make_engine, store):
    _, url = await start_receiver([200], delay=1.0)
    endpoint = await add_endpoint(url=url)
    event = await _emit(emitter, merchant, endpoint)

    await make_engine(request_timeout_seconds=0.1).sweep(T0)

    stored = store.events[event.id]
    assert stored.attempts == 1
    assert not stored.delivered
    assert stored.response_status is None
    assert stored.last_error


async def test_connection_error_counts_as_failure(add_endpoint, emitter, merchant, make_engine, store):
    endpoint = await add_endpoint(url="http://127.0.0.1:1/hook")
    event = await _emit(emitter, merchant, endpoint)

    await make_engine().sweep(T0)

    stored = store.events[event.id]
    assert stored.attempts == 1
    assert not stored.delivered
    assert stored.last_error.startswith("Webhook request failed")


async def test_response_body_is_bounded(start_receiver, add_endpoint, emitter, merchant, make_engine, store):
    _, url = await start_receiver([503])
    endpoint = await add_endpoint(url=url)
    event = await _emit(emitter, merchant, endpoint)

    await make_engine(response_body_max_chars=4).sweep(T0)

    assert store.events[event.id].response_body == "stat"


async def test_manual_retry_makes_event_due(
    start_receiver, add_endpoint, emitter, merchant, make_engine, webhook_service, store
):
    _, url = await start_receiver([500, 200])
    endpoint = await add_endpoint(url=url)
    event = await _emit(emitter, merchant, endpoint)
    engine = make_engine()

    await engine.sweep(T0)
    assert await engine.sweep(T0) == 0

    retried = await webhook_service.retry_event(merchant.id, event.id)
    assert retried.next_retry_at is None
    assert retried.attempts == 1

    assert await engine.sweep(T0) == 1
    stored = store.events[event.id]
    assert stored.delivered
    assert stored.attempts == 2

    with pytest.raises(InvalidStateError):
        await webhook_service.retry_event(merchant.id, event.id)


async def test_manual_retry_of_abandoned_event_is_rejected(
    add_endpoint, emitter, merchant, make_engine, webhook_service, store
):
    endpoint = await add_endpoint(active=False)
    event = await _emit(emitter, merchant, endpoint)
    engine = make_engine()
    for attempt in range(5):
        await engine.sweep(T0 + timedelta(hours=2 * attempt))
    assert store.events[event.id].attempts == 5

    with pytest.raises(InvalidStateError):
        await webhook_service.retry_event(merchant.id, event.id)
    assert store.events[event.id].attempts == 5


async def test_deliver_now(start_receiver, add_endpoint, emitter, merchant, make_engine):
    _, url = await start_receiver([200])
    endpoint = await add_endpoint(url=url)
    event = await _emit(emitter, merchant, endpoint)
    engine = make_engine()

    delivered = await engine.deliver_now(event.id)

    assert delivered is not None and delivered.delivered
    assert await engine.deliver_now(event.id) is None


async def test_dispatcher_loop_wakes_on_emit(
    start_receiver, add_endpoint, emitter, merchant, make_engine, signal
):
    receiver, url = await start_receiver([200])
    endpoint = await add_endpoint(url=url)
    task = asyncio.create_task(
        _dispatcher_loop(make_engine(), signal, interval_seconds=60, batch_size=10)
    )
    try:
        await _emit(emitter, merchant, endpoint)
        await asyncio.wait_for(receiver.received.wait(), timeout=5)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    assert len(receiver.requests) == 1


async def test_endpoint_deleted_mid_attempt_does_not_break_sweep(
    aiohttp_server, start_receiver, add_endpoint, emitter, merchant, make_engine, repositories, store
):
    holder = {}

    async def delete_then_ack(request: web.Request) -> web.Response:
        await repositories.webhook_endpoints.delete(merchant.id, holder["endpoint_id"])
        return web.Response(text="ok")

    app = web.Application()
    app.router.add_post("/hook", delete_then_ack)
    server = await aiohttp_server(app)
    doomed = await add_endpoint(url=str(server.make_url("/hook")))
    holder["endpoint_id"] = doomed.id
    doomed_event = await _emit(emitter, merchant, doomed)

    _, failing_url = await start_receiver([500])
    failing = await add_endpoint(url=failing_url)
    failing_event = await _emit(emitter, merchant, failing)

    assert await make_engine().sweep(T0) == 2

    assert doomed_event.id not in store.events
    stored = store.events[failing_event.id]
    assert stored.attempts == 1
    assert stored.response_status == 500
    assert stored.locked_at is None


async def test_attempts_are_stamped_when_they_start(
    start_receiver, add_endpoint, emitter, merchant, make_engine, store
):
    _, url = await start_receiver([500, 500], delay=0.05)
    endpoint = await add_endpoint(url=url)
    first = await _emit(emitter, merchant, endpoint)
    second = await _emit(emitter, merchant, endpoint)
    before = datetime.now(timezone.utc)

    assert await make_engine(max_concurrency=1).sweep() == 2

    stamps = sorted(store.events[e.id].last_attempted_at for e in (first, second))
    assert stamps[0] >= before
    assert stamps[1] - stamps[0] >= timedelta(seconds=0.04)
    for event in (first, second):
        stored = store.events[event.id]
        assert stored.next_retry_at == stored.last_attempted_at + timedelta(seconds=60)
