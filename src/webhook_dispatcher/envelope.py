import json

from src.models.webhook import WebhookEndpoint, WebhookEvent
from src.webhook_dispatcher.signer import WebhookSigner

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_ID_HEADER = "X-Webhook-Event-Id"
EVENT_TYPE_HEADER = "X-Webhook-Event-Type"


def serialize_envelope(event: WebhookEvent) -> bytes:
    """The exact bytes sent on the wire, and signed.

    The timestamp is the event's creation time, so every retry of an event
    carries an identical body.
    """
    envelope = {
        "id": event.event_id,
        "eventType": event.event_type.value,
        "payload": event.payload,
        "timestamp": event.created_at.isoformat(),
    }
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def build_request(event: WebhookEvent, endpoint: WebhookEndpoint) -> tuple[bytes, dict[str, str]]:
    body = serialize_envelope(event)
    headers = {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: WebhookSigner(endpoint.secret).sign(body),
        EVENT_ID_HEADER: event.event_id,
        EVENT_TYPE_HEADER: event.event_type.value,
    }
    return body, headers
