import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class EventType(Enum):
    PAYMENT_CREATED = "payment.created"
    PAYMENT_CONFIRMED = "payment.confirmed"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_REFUNDED = "payment.refunded"
    INVOICE_CREATED = "invoice.created"
    INVOICE_PAID = "invoice.paid"

    @classmethod
    def for_status(cls, entity: str, status: str) -> "EventType | None":
        """Map an ``<entity>.<status>`` pair to its event type, if one exists."""
        try:
            return cls(f"{entity}.{status}")
        except ValueError:
            return None


class EventStatus(Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class WebhookEndpoint:
    endpoint_id: str
    merchant_id: str
    url: str
    events: frozenset[EventType]
    secret: str
    created_at: datetime
    active: bool = True
    consecutive_failures: int = 0
    flagged_at: datetime | None = None

    def subscribes_to(self, event_type: EventType) -> bool:
        return self.active and event_type in self.events


@dataclass
class WebhookEvent:
    event_id: str
    endpoint_id: str
    event_type: EventType
    payload_json: str  # frozen at creation
    idempotency_key: str
    source_id: str
    revision: int
    sequence: int
    created_at: datetime
    status: EventStatus = EventStatus.PENDING
    attempts: int = 0
    last_attempt: datetime | None = None
    next_attempt_at: datetime | None = None
    response_code: int | None = None
    response_body: str | None = None
    claim_token: str | None = None
    claimed_at: datetime | None = None

    @property
    def payload(self) -> dict:
        """A fresh copy of the payload captured when the event was created."""
        return json.loads(self.payload_json)
