import uuid
from datetime import datetime, timezone
from decimal import Decimal

from src.event_store.store import freeze_payload
from src.models.payment import Payment, PaymentStatus
from src.models.webhook import EventType, WebhookEndpoint, WebhookEvent
from src.utils.crypto import generate_webhook_secret, idempotency_key


class PaymentFactory:
    """Factory for creating Payment instances with sensible defaults."""

    @staticmethod
    def create(**overrides) -> Payment:
        now = datetime.now(timezone.utc)
        defaults = {
            "payment_id": f"pay_{uuid.uuid4().hex[:16]}",
            "merchant_id": f"merch_{uuid.uuid4().hex[:8]}",
            "amount": Decimal("100.00"),
            "currency": "USDC",
            "status": PaymentStatus.CREATED,
            "created_at": now,
            "updated_at": now,
            "merchant_wallet": "0x" + "ab" * 20,
            "metadata": {},
        }
        defaults.update(overrides)
        return Payment(**defaults)


class EndpointFactory:
    """Factory for WebhookEndpoint records that are not yet stored anywhere."""

    @staticmethod
    def create(**overrides) -> WebhookEndpoint:
        defaults = {
            "endpoint_id": f"we_{uuid.uuid4().hex[:16]}",
            "merchant_id": f"merch_{uuid.uuid4().hex[:8]}",
            "url": "http://127.0.0.1:9/webhook",
            "events": frozenset(EventType),
            "secret": generate_webhook_secret(),
            "created_at": datetime.now(timezone.utc),
        }
        defaults.update(overrides)
        return WebhookEndpoint(**defaults)


class WebhookFactory:
    """Factory for standalone WebhookEvent instances (not claimed from a store)."""

    @staticmethod
    def create_event(event_type: EventType = EventType.PAYMENT_CONFIRMED, **overrides) -> WebhookEvent:
        payment_id = overrides.pop("payment_id", f"pay_{uuid.uuid4().hex[:16]}")
        endpoint_id = overrides.pop("endpoint_id", f"we_{uuid.uuid4().hex[:16]}")
        payload = {
            "id": payment_id,
            "amount": "100.00",
            "currency": "USDC",
            "status": event_type.value.split(".", 1)[1],
        }
        payload.update(overrides.pop("payload", {}))

        defaults = {
            "event_id": f"evt_{uuid.uuid4().hex[:16]}",
            "endpoint_id": endpoint_id,
            "event_type": event_type,
            "payload_json": freeze_payload(payload),
            "idempotency_key": idempotency_key(payment_id, event_type.value, endpoint_id, 1),
            "source_id": payment_id,
            "revision": 1,
            "sequence": 1,
            "created_at": datetime.now(timezone.utc),
        }
        defaults.update(overrides)
        return WebhookEvent(**defaults)
