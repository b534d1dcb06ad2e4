"""Unit tests for sbtc_gateway.workers task functions.

Pool access is mocked; repositories are either mocks or in-memory fakes.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from sbtc_gateway.domain.dto import PaymentIntentCreateDTO
from sbtc_gateway.domain.enums import PaymentIntentStatus
from sbtc_gateway.workers import worker
from tests.utils import transfer_tx


def test_worker_registers_tasks():
    names = [task.name for task in worker.tasks]
    assert names == ["webhook_reclaim_stuck", "webhook_purge_delivered", "payment_reconcile"]


# ---------------------------------------------------------------------------
# webhook_reclaim_stuck
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_pool_reclaim():
    with patch(
        "sbtc_gateway.workers.webhook_reclaim.get_pool",
        new_callable=AsyncMock,
        return_value=AsyncMock(),
    ):
        yield


async def test_webhook_reclaim_returns_summary(mock_pool_reclaim):
    now = datetime.now(timezone.utc)
    with patch("sbtc_gateway.workers.webhook_reclaim.WebhookEventRepository") as MockRepo:
        instance = MockRepo.return_value
        instance.reclaim_stuck = AsyncMock(return_value=3)

        from sbtc_gateway.workers.webhook_reclaim import webhook_reclaim_stuck

        result = await webhook_reclaim_stuck(now)

    assert result == "reclaimed=3"
    cutoff = instance.reclaim_stuck.call_args[0][0]
    assert cutoff == now - timedelta(minutes=10)


async def test_webhook_reclaim_returns_none_when_idle(mock_pool_reclaim):
    with patch("sbtc_gateway.workers.webhook_reclaim.WebhookEventRepository") as MockRepo:
        MockRepo.return_value.reclaim_stuck = AsyncMock(return_value=0)

        from sbtc_gateway.workers.webhook_reclaim import webhook_reclaim_stuck

        assert await webhook_reclaim_stuck(datetime.now(timezone.utc)) is None


# ---------------------------------------------------------------------------
# webhook_purge_delivered
# ---------------------------------------------------------------------------

async def test_webhook_purge_uses_retention():
    now = datetime.now(timezone.utc)
    with patch(
        "sbtc_gateway.workers.webhook_purge.get_pool",
        new_callable=AsyncMock,
        return_value=AsyncMock(),
    ), patch("sbtc_gateway.workers.webhook_purge.WebhookEventRepository") as MockRepo:
        instance = MockRepo.return_value
        instance.delete_old_delivered = AsyncMock(return_value=7)

        from sbtc_gateway.workers.webhook_purge import webhook_purge_delivered

        result = await webhook_purge_delivered(now)

    assert result == "purged=7"
    assert instance.delete_old_delivered.call_args[0][0] == now - timedelta(days=30)


# ---------------------------------------------------------------------------
# payment_reconcile
# ---------------------------------------------------------------------------

@pytest.fixture
def patched_reconcile(repositories, explorer):
    with patch(
        "sbtc_gateway.workers.payment_reconcile.get_pool",
        new_callable=AsyncMock,
        return_value=AsyncMock(),
    ), patch(
        "sbtc_gateway.workers.payment_reconcile.Repositories.from_pool",
        return_value=repositories,
    ), patch(
        "sbtc_gateway.workers.payment_reconcile.HiroExplorerClient",
        return_value=explorer,
    ):
        yield


async def test_payment_reconcile_settles_matches(
    patched_reconcile, intent_service, merchant, explorer, store
):
    paid = await intent_service.create_intent(merchant.id, PaymentIntentCreateDTO(amount=100))
    await intent_service.confirm(paid.id)
    unpaid = await intent_service.create_intent(merchant.id, PaymentIntentCreateDTO(amount=200))
    explorer.transactions = [transfer_tx(tx_id="0xpaid", amount=100, memo=paid.id)]

    from sbtc_gateway.workers.payment_reconcile import payment_reconcile

    result = await payment_reconcile(datetime.now(timezone.utc))

    assert result == "checked=2 settled=1"
    assert store.intents[paid.id].status == PaymentIntentStatus.SUCCEEDED
    assert store.intents[unpaid.id].status == PaymentIntentStatus.CREATED


async def test_payment_reconcile_idle(patched_reconcile, explorer):
    from sbtc_gateway.workers.payment_reconcile import payment_reconcile

    assert await payment_reconcile(datetime.now(timezone.utc)) is None
    assert explorer.calls == []


async def test_payment_reconcile_skips_misconfigured_merchant(
    patched_reconcile, intent_service, merchant, store, explorer
):
    store.merchants[merchant.id] = merchant.model_copy(update={"stacks_address": None})
    await intent_service.create_intent(merchant.id, PaymentIntentCreateDTO(amount=100))

    from sbtc_gateway.workers.payment_reconcile import payment_reconcile

    assert await payment_reconcile(datetime.now(timezone.utc)) == "checked=1 settled=0"
    assert explorer.calls == []
