"""Wires repositories, event store, lifecycle services and the dispatcher together."""

from dataclasses import dataclass
from random import Random

import requests

from src.config.settings import Settings, load_settings
from src.event_store.store import EventStore
from src.lifecycle.invoices import InvoiceLifecycle
from src.lifecycle.proof import ProofRecordingBridge
from src.lifecycle.publisher import EventPublisher
from src.lifecycle.refunds import RefundLifecycle
from src.lifecycle.state_machine import PaymentStateMachine
from src.observability.alerting import EndpointHealthMonitor
from src.observability.metrics import MetricsCollector
from src.replay.manager import WebhookReplayManager
from src.storage.memory import (
    InMemoryInvoiceRepository,
    InMemoryPaymentRepository,
    InMemoryRefundRepository,
    InMemoryWebhookEndpointRepository,
)
from src.subscriptions.manager import SubscriptionManager
from src.webhook_dispatcher.engine import WebhookDispatcher
from src.webhook_dispatcher.logger import DeliveryLogger
from src.webhook_dispatcher.retry import RetryPolicy


@dataclass
class PaymentPlatform:
    settings: Settings
    payments: PaymentStateMachine
    invoices: InvoiceLifecycle
    refunds: RefundLifecycle
    subscriptions: SubscriptionManager
    event_store: EventStore
    dispatcher: WebhookDispatcher
    replay: WebhookReplayManager
    delivery_logger: DeliveryLogger
    metrics: MetricsCollector
    health: EndpointHealthMonitor

    def close(self) -> None:
        self.dispatcher.close()
        self.payments.close()


def build_platform(
    settings: Settings | None = None,
    proof_bridge: ProofRecordingBridge | None = None,
    session: requests.Session | None = None,
    rng: Random | None = None,
) -> PaymentPlatform:
    settings = settings or load_settings()
    endpoints = InMemoryWebhookEndpointRepository()
    payments = InMemoryPaymentRepository()

    event_store = EventStore(
        endpoints,
        RetryPolicy.from_settings(settings.delivery, rng=rng),
        visibility_timeout=settings.delivery.visibility_timeout,
    )
    publisher = EventPublisher(endpoints, event_store)
    machine = PaymentStateMachine(payments, publisher, settings, proof_bridge=proof_bridge)

    delivery_logger = DeliveryLogger()
    metrics = MetricsCollector()
    health = EndpointHealthMonitor(endpoints, threshold=settings.delivery.deactivate_after)
    dispatcher = WebhookDispatcher(
        event_store,
        endpoints,
        delivery_logger,
        settings=settings.delivery,
        metrics=metrics,
        health=health,
        session=session,
    )

    return PaymentPlatform(
        settings=settings,
        payments=machine,
        invoices=InvoiceLifecycle(InMemoryInvoiceRepository(), payments, publisher),
        refunds=RefundLifecycle(InMemoryRefundRepository(), machine),
        subscriptions=SubscriptionManager(endpoints, event_store),
        event_store=event_store,
        dispatcher=dispatcher,
        replay=WebhookReplayManager(event_store, delivery_logger),
        delivery_logger=delivery_logger,
        metrics=metrics,
        health=health,
    )
