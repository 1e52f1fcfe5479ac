"""Merchant-managed webhook endpoints."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable
from urllib.parse import urlparse

from src.event_store.store import EventStore
from src.lifecycle.errors import EndpointInUse, InvalidEndpoint, NotFound
from src.models.webhook import EventType, WebhookEndpoint, WebhookEvent
from src.storage.base import WebhookEndpointRepository
from src.utils.crypto import generate_webhook_secret

logger = logging.getLogger(__name__)


def _validate_url(url: str) -> str:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidEndpoint(f"Invalid URL: {url!r}")
    return url


def _parse_events(events: Iterable) -> frozenset[EventType]:
    parsed = set()
    for value in events or ():
        try:
            parsed.add(value if isinstance(value, EventType) else EventType(value))
        except ValueError as e:
            raise InvalidEndpoint(f"Unknown event type: {value!r}") from e
    if not parsed:
        raise InvalidEndpoint("At least one event type is required")
    return frozenset(parsed)


class SubscriptionManager:
    def __init__(self, endpoints: WebhookEndpointRepository, event_store: EventStore):
        self._endpoints = endpoints
        self._event_store = event_store

    def register(self, merchant_id: str, url: str, events: Iterable) -> WebhookEndpoint:
        """Create an active endpoint. The returned secret is the only time it is shown."""
        endpoint = WebhookEndpoint(
            endpoint_id=f"we_{uuid.uuid4().hex[:24]}",
            merchant_id=merchant_id,
            url=_validate_url(url),
            events=_parse_events(events),
            secret=generate_webhook_secret(),
            created_at=datetime.now(timezone.utc),
        )
        stored = self._endpoints.add(endpoint)
        logger.info("Registered endpoint %s for merchant %s", stored.endpoint_id, merchant_id)
        return stored

    def get(self, merchant_id: str, endpoint_id: str) -> WebhookEndpoint:
        endpoint = self._endpoints.get(endpoint_id)
        if endpoint is None or endpoint.merchant_id != merchant_id:
            raise NotFound("Webhook endpoint", endpoint_id)
        return endpoint

    def list_endpoints(self, merchant_id: str) -> list[WebhookEndpoint]:
        return self._endpoints.list_for_merchant(merchant_id)

    def update(
        self,
        merchant_id: str,
        endpoint_id: str,
        url: str | None = None,
        events: Iterable | None = None,
        active: bool | None = None,
    ) -> WebhookEndpoint:
        self.get(merchant_id, endpoint_id)
        url = _validate_url(url) if url is not None else None
        events = _parse_events(events) if events is not None else None

        def apply(endpoint: WebhookEndpoint) -> None:
            if url is not None:
                endpoint.url = url
            if events is not None:
                endpoint.events = events
            if active is not None:
                endpoint.active = active
                if active:
                    # Re-enabling clears the review flag
                    endpoint.consecutive_failures = 0
                    endpoint.flagged_at = None

        return self._endpoints.update(endpoint_id, apply)

    def disable(self, merchant_id: str, endpoint_id: str) -> WebhookEndpoint:
        return self.update(merchant_id, endpoint_id, active=False)

    def rotate_secret(self, merchant_id: str, endpoint_id: str) -> WebhookEndpoint:
        self.get(merchant_id, endpoint_id)
        secret = generate_webhook_secret()

        def apply(endpoint: WebhookEndpoint) -> None:
            endpoint.secret = secret

        return self._endpoints.update(endpoint_id, apply)

    def delete(self, merchant_id: str, endpoint_id: str) -> None:
        self.get(merchant_id, endpoint_id)
        if self._event_store.has_undelivered(endpoint_id):
            raise EndpointInUse(
                f"Endpoint {endpoint_id} still has undelivered events; disable it instead"
            )
        self._endpoints.delete(endpoint_id)
        logger.info("Deleted endpoint %s", endpoint_id)

    def events(self, merchant_id: str, limit: int = 100) -> list[WebhookEvent]:
        """Events for all of the merchant's endpoints, newest first."""
        endpoint_ids = [e.endpoint_id for e in self._endpoints.list_for_merchant(merchant_id)]
        if not endpoint_ids:
            return []
        return self._event_store.list_events(endpoint_ids, limit=limit)
