import logging

from src.event_store.store import EventStore
from src.models.webhook import WebhookEvent
from src.webhook_dispatcher.logger import DeliveryLogger

logger = logging.getLogger(__name__)


class WebhookReplayManager:
    """Operator tooling to re-queue permanently failed webhook events.

    Replay never sends anything itself: the event goes back into its
    endpoint's queue with attempts reset, and the dispatcher picks it up
    like any other pending event. Earlier attempts stay in the delivery log.
    """

    def __init__(self, event_store: EventStore, logger: DeliveryLogger):
        self.event_store = event_store
        self.logger = logger

    def replay_event(self, event_id: str, operator: str) -> WebhookEvent:
        """Re-queue one dead event. Raises ReplayNotAllowed for any other status."""
        event = self.event_store.reset_for_replay(event_id)
        logger.info(
            "Operator %s replayed event %s (%d earlier attempt(s))",
            operator, event_id, len(self.logger.get_attempts(event_id=event_id)),
        )
        return event

    def replay_failed(self, operator: str, endpoint_ids: list[str] | None = None) -> list[WebhookEvent]:
        """Re-queue every dead event, optionally only for some endpoints."""
        dead = sorted(self.event_store.dead_events(endpoint_ids), key=lambda e: e.sequence)
        return [self.replay_event(e.event_id, operator) for e in dead]

    def history(self, event_id: str) -> dict:
        """Current state of an event plus every attempt made for it."""
        event = self.event_store.get_event(event_id)
        return {
            "event_id": event.event_id,
            "status": event.status.value,
            "attempts": event.attempts,
            "last_attempt": event.last_attempt.isoformat() if event.last_attempt else None,
            "response_code": event.response_code,
            "response_body": event.response_body,
            "deliveries": self.logger.get_attempts(event_id=event_id),
        }
