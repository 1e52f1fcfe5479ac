import logging

from src.event_store.store import EventRequest, EventStore
from src.models.webhook import EventType, WebhookEvent
from src.storage.base import WebhookEndpointRepository

logger = logging.getLogger(__name__)


class EventPublisher:
    """Fans a lifecycle change out to one event per subscribed active endpoint."""

    def __init__(self, endpoints: WebhookEndpointRepository, event_store: EventStore):
        self._endpoints = endpoints
        self._event_store = event_store

    def publish(
        self,
        merchant_id: str,
        entity: str,
        status: str,
        *,
        source_id: str,
        revision: int,
        payload: dict,
    ) -> list[WebhookEvent]:
        """Queue ``<entity>.<status>`` events; statuses outside the vocabulary queue nothing."""
        event_type = EventType.for_status(entity, status)
        if event_type is None:
            return []
        endpoints = self._endpoints.subscribed(merchant_id, event_type)
        if not endpoints:
            return []
        requests = [
            EventRequest(
                endpoint_id=endpoint.endpoint_id,
                event_type=event_type,
                payload=payload,
                source_id=source_id,
                revision=revision,
            )
            for endpoint in endpoints
        ]
        events = self._event_store.create_events(requests)
        logger.info(
            "Queued %d %s event(s) for %s revision %d",
            len(events), event_type.value, source_id, revision,
        )
        return events
