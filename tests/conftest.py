from datetime import datetime, timezone

import pytest

from src.app.container import build_platform
from src.config.settings import DeliverySettings, Settings
from src.event_store.store import EventStore
from src.lifecycle.publisher import EventPublisher
from src.lifecycle.state_machine import PaymentStateMachine
from src.merchant_receiver.server import MerchantWebhookServer
from src.models.webhook import EventType
from src.observability.alerting import EndpointHealthMonitor
from src.observability.metrics import MetricsCollector
from src.storage.memory import InMemoryPaymentRepository, InMemoryWebhookEndpointRepository
from src.utils.factories import EndpointFactory
from src.webhook_dispatcher.retry import RetryPolicy
from src.webhook_dispatcher.signer import WebhookSigner


WEBHOOK_SECRET = "whsec_test-secret-key-for-hmac"
MERCHANT_ID = "merch_test"
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def webhook_secret():
    return WEBHOOK_SECRET


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def signer():
    return WebhookSigner(WEBHOOK_SECRET)


@pytest.fixture
def retry_policy():
    """Five attempts, no delay between them."""
    return RetryPolicy(max_attempts=5, base_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
def endpoints():
    return InMemoryWebhookEndpointRepository()


@pytest.fixture
def event_store(endpoints, retry_policy):
    return EventStore(endpoints, retry_policy, visibility_timeout=30)


@pytest.fixture
def add_endpoint(endpoints):
    """Store an endpoint built by EndpointFactory and return it."""

    def _add(**overrides):
        overrides.setdefault("merchant_id", MERCHANT_ID)
        return endpoints.add(EndpointFactory.create(**overrides))

    return _add


@pytest.fixture
def payments():
    return InMemoryPaymentRepository()


@pytest.fixture
def publisher(endpoints, event_store):
    return EventPublisher(endpoints, event_store)


@pytest.fixture
def machine(payments, publisher):
    m = PaymentStateMachine(payments, publisher, Settings())
    yield m
    m.close()


@pytest.fixture
def delivery_settings():
    return DeliverySettings(
        max_attempts=5,
        base_delay=0.0,
        max_delay=0.0,
        jitter=0.0,
        timeout_seconds=2,
        visibility_timeout=30,
        workers=4,
        deactivate_after=3,
    )


@pytest.fixture
def platform(delivery_settings):
    p = build_platform(Settings(delivery=delivery_settings))
    yield p
    p.close()


@pytest.fixture
def drain(platform):
    """Run dispatcher cycles until nothing is left to deliver right now."""

    def _drain(max_cycles: int = 20):
        processed = []
        for _ in range(max_cycles):
            batch = platform.dispatcher.run_once()
            if not batch:
                break
            processed.extend(batch)
        return processed

    return _drain


@pytest.fixture
def merchant_server():
    server = MerchantWebhookServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def subscribed_endpoint(platform, merchant_server):
    """An endpoint on the local receiver subscribed to payment.created and payment.confirmed."""
    endpoint = platform.subscriptions.register(
        MERCHANT_ID,
        merchant_server.url,
        [EventType.PAYMENT_CREATED.value, EventType.PAYMENT_CONFIRMED.value],
    )
    merchant_server.enable_signature_verification(endpoint.secret)
    return endpoint


@pytest.fixture
def metrics():
    return MetricsCollector(window_seconds=300)


@pytest.fixture
def health(endpoints):
    return EndpointHealthMonitor(endpoints, threshold=3)
