from __future__ import annotations

import uuid

import pytest

from sbtc_gateway.domain.models import Merchant
from sbtc_gateway.main import create_app
from sbtc_gateway.services.payment_intents import PaymentIntentService
from sbtc_gateway.services.reconciler import ChainReconciler
from sbtc_gateway.services.signing import generate_secret
from sbtc_gateway.services.webhooks import WebhookEmitter, WebhookService
from sbtc_gateway.webhooks_dispatcher import DispatchSignal
from tests.fakes import FakeExplorer, FakeStore, make_repositories
from tests.utils import MERCHANT_ADDRESS, TESTNET_CONTRACT


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def repositories(store):
    return make_repositories(store)


@pytest.fixture
def merchant(store):
    merchant = Merchant(id=uuid.uuid4(), name="Coffee Shop", stacks_address=MERCHANT_ADDRESS)
    store.merchants[merchant.id] = merchant
    return merchant


@pytest.fixture
def signal():
    return DispatchSignal()


@pytest.fixture
def emitter(repositories, signal):
    return WebhookEmitter(
        repositories.webhook_endpoints,
        repositories.webhook_events,
        on_enqueued=signal.set,
    )


@pytest.fixture
def intent_service(repositories, emitter):
    return PaymentIntentService(repositories.payment_intents, repositories.merchants, emitter)


@pytest.fixture
def webhook_service(repositories, emitter):
    return WebhookService(
        repositories.webhook_endpoints,
        repositories.webhook_events,
        emitter,
        max_attempts=5,
    )


@pytest.fixture
def explorer():
    return FakeExplorer()


@pytest.fixture
def reconciler(intent_service, repositories, explorer):
    return ChainReconciler(
        intent_service,
        repositories.merchants,
        explorer,
        contract_id=TESTNET_CONTRACT,
        page_size=20,
    )


@pytest.fixture
def add_endpoint(repositories, merchant):
    """Factory registering a webhook endpoint for the default merchant."""
    counter = 0

    async def _add(url="http://127.0.0.1:9/hook", events=("*",), active=True, merchant_id=None):
        nonlocal counter
        counter += 1
        return await repositories.webhook_endpoints.create(
            endpoint_id=f"we_test{counter}",
            merchant_id=merchant_id or merchant.id,
            url=url,
            events=list(events),
            secret=generate_secret(),
            active=active,
        )

    return _add


@pytest.fixture
async def service_client(aiohttp_client, repositories, explorer, merchant):
    """API client over in-memory storage; no dispatcher or worker running."""
    app = create_app(repositories=repositories, explorer=explorer, background=False)
    return await aiohttp_client(app)
