import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import requests

from src.config.settings import DeliverySettings
from src.event_store.errors import StaleClaim
from src.event_store.store import EventStore, is_dead
from src.models.delivery import DeliveryAttempt, DeliveryOutcome
from src.models.webhook import EventStatus, WebhookEndpoint, WebhookEvent
from src.observability.alerting import EndpointHealthMonitor
from src.observability.metrics import MetricsCollector
from src.storage.base import WebhookEndpointRepository
from src.webhook_dispatcher.envelope import build_request
from src.webhook_dispatcher.logger import DeliveryLogger

logger = logging.getLogger(__name__)

MAX_RESPONSE_BODY = 1000


class WebhookDispatcher:
    """Turns claimed webhook events into signed HTTP deliveries.

    Each cycle claims a batch from the event store (at most one event per
    endpoint), delivers the batch in parallel and reports every outcome
    back to the store, which decides between delivered, retry later, and
    permanently failed.
    """

    def __init__(
        self,
        event_store: EventStore,
        endpoints: WebhookEndpointRepository,
        delivery_logger: DeliveryLogger,
        settings: DeliverySettings | None = None,
        metrics: MetricsCollector | None = None,
        health: EndpointHealthMonitor | None = None,
        session: requests.Session | None = None,
    ):
        self.event_store = event_store
        self.endpoints = endpoints
        self.delivery_logger = delivery_logger
        self.settings = settings or DeliverySettings()
        self.metrics = metrics
        self.health = health
        self._session = session or requests.Session()
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.workers, thread_name_prefix="webhook-dispatch"
        )
        self._stop = threading.Event()

    def deliver(self, event: WebhookEvent, endpoint: WebhookEndpoint) -> DeliveryAttempt:
        """Send one signed delivery attempt. Never raises for HTTP failures."""
        body, headers = build_request(event, endpoint)

        start = time.monotonic()
        status_code = None
        response_body = None
        error = None

        try:
            resp = self._session.post(
                endpoint.url,
                data=body,
                headers=headers,
                timeout=self.settings.timeout_seconds,
                allow_redirects=False,
            )
            status_code = resp.status_code
            response_body = resp.text[:MAX_RESPONSE_BODY]
        except requests.exceptions.Timeout:
            error = "timeout"
        except requests.exceptions.ConnectionError:
            error = "connection_error"
        except requests.exceptions.RequestException as e:
            error = str(e)[:MAX_RESPONSE_BODY]

        elapsed_ms = (time.monotonic() - start) * 1000

        attempt = DeliveryAttempt(
            attempt_id=f"att_{uuid.uuid4().hex[:16]}",
            event_id=event.event_id,
            endpoint_id=endpoint.endpoint_id,
            attempt_number=event.attempts + 1,
            url=endpoint.url,
            status_code=status_code,
            timestamp=datetime.now(timezone.utc),
            response_time_ms=elapsed_ms,
            error=error,
            response_body=response_body,
        )
        self.delivery_logger.log(attempt)
        return attempt

    def process(self, event: WebhookEvent, now: datetime | None = None) -> WebhookEvent | None:
        """Deliver one claimed event and record the outcome.

        Returns the updated event, or None if the claim was released or lost.
        """
        if self._stop.is_set():
            self.event_store.release(event.event_id, event.claim_token)
            return None

        endpoint = self.endpoints.get(event.endpoint_id)
        if endpoint is None or not endpoint.active:
            logger.warning(
                "Endpoint %s unavailable, releasing event %s", event.endpoint_id, event.event_id
            )
            self.event_store.release(event.event_id, event.claim_token)
            return None

        attempt = self.deliver(event, endpoint)
        outcome = DeliveryOutcome(
            status_code=attempt.status_code,
            response_body=attempt.response_body,
            error=attempt.error,
        )
        try:
            updated = self.event_store.record_attempt(
                event.event_id, event.claim_token, outcome, now=now
            )
        except StaleClaim:
            # Claim outlived the visibility timeout and another worker owns the event now
            logger.warning("Lost claim on event %s; outcome discarded", event.event_id)
            return None

        if self.metrics is not None:
            self.metrics.record(event.event_type.value, success=attempt.succeeded)
        if self.health is not None:
            if updated.status is EventStatus.DELIVERED:
                self.health.record_delivered(updated.endpoint_id)
            elif is_dead(updated):
                self.health.record_dead(updated)
        return updated

    def _process_safely(self, event: WebhookEvent, now: datetime | None) -> WebhookEvent | None:
        try:
            return self.process(event, now)
        except Exception:
            # The claim stays in flight and is reclaimed after the visibility timeout
            logger.exception("Unexpected error delivering event %s", event.event_id)
            return None

    def run_once(self, now: datetime | None = None) -> list[WebhookEvent]:
        """Claim one batch and deliver it. Returns the events that were processed."""
        if self._stop.is_set():
            return []
        claimed = self.event_store.claim_next_deliverable(self.settings.batch_size, now)
        if not claimed:
            return []
        results = self._executor.map(lambda e: self._process_safely(e, now), claimed)
        return [r for r in results if r is not None]

    def run_forever(self) -> None:
        logger.info(
            "Webhook dispatcher started (%d workers, batch %d)",
            self.settings.workers, self.settings.batch_size,
        )
        while not self._stop.is_set():
            processed = self.run_once()
            if not processed:
                self._stop.wait(self.settings.poll_interval)
        logger.info("Webhook dispatcher stopped")

    def stop(self) -> None:
        """Stop between deliveries; events claimed but not yet sent are released."""
        self._stop.set()

    def close(self) -> None:
        self.stop()
        self._executor.shutdown(wait=True)
        self._session.close()
