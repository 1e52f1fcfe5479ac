import logging
import threading
from datetime import datetime, timezone

from src.lifecycle.errors import NotFound
from src.models.webhook import WebhookEndpoint, WebhookEvent
from src.storage.base import WebhookEndpointRepository

logger = logging.getLogger(__name__)


def _reset_failures(endpoint: WebhookEndpoint) -> None:
    endpoint.consecutive_failures = 0


class EndpointHealthMonitor:
    """Flags and deactivates endpoints after repeated permanent delivery failures.

    A delivered event resets the endpoint's count of consecutive dead
    events. Reaching ``threshold`` deactivates the endpoint, records an
    alert and invokes ``callback`` with it.
    """

    def __init__(
        self,
        endpoints: WebhookEndpointRepository,
        threshold: int = 3,
        callback=None,
    ):
        self.endpoints = endpoints
        self.threshold = threshold
        self.callback = callback
        self._alerts: list[dict] = []
        self._lock = threading.Lock()

    def record_delivered(self, endpoint_id: str) -> None:
        endpoint = self.endpoints.get(endpoint_id)
        if endpoint is None or endpoint.consecutive_failures == 0:
            return
        try:
            self.endpoints.update(endpoint_id, _reset_failures)
        except NotFound:
            logger.debug("Endpoint %s was deleted before its failure count was reset", endpoint_id)

    def record_dead(self, event: WebhookEvent) -> dict | None:
        """Count a permanently failed event. Returns the alert if the endpoint got flagged."""
        flagged = []

        def count_failure(endpoint: WebhookEndpoint) -> None:
            endpoint.consecutive_failures += 1
            if endpoint.active and endpoint.consecutive_failures >= self.threshold:
                endpoint.active = False
                endpoint.flagged_at = datetime.now(timezone.utc)
                flagged.append(True)

        try:
            endpoint = self.endpoints.update(event.endpoint_id, count_failure)
        except NotFound:
            logger.debug("Dead event %s belongs to deleted endpoint %s", event.event_id, event.endpoint_id)
            return None
        if not flagged:
            return None

        alert = {
            "type": "webhook_endpoint_deactivated",
            "endpoint_id": endpoint.endpoint_id,
            "merchant_id": endpoint.merchant_id,
            "url": endpoint.url,
            "consecutive_failures": endpoint.consecutive_failures,
            "last_event_id": event.event_id,
            "message": (
                f"Endpoint {endpoint.url} deactivated after "
                f"{endpoint.consecutive_failures} consecutive failed events"
            ),
        }
        with self._lock:
            self._alerts.append(alert)

        logger.warning(alert["message"])
        if self.callback:
            self.callback(alert)
        return alert

    def get_alerts(self) -> list[dict]:
        with self._lock:
            return list(self._alerts)
