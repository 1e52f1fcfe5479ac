"""Tests for webhook payload snapshots and the signed envelope."""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.config.settings import ChainSettings
from src.event_store.store import freeze_payload
from src.lifecycle.payloads import payment_payload
from src.models.payment import PaymentStatus
from src.models.refund import Refund, RefundStatus
from src.models.webhook import EventType
from src.utils.factories import EndpointFactory, PaymentFactory, WebhookFactory
from src.webhook_dispatcher.envelope import (
    EVENT_ID_HEADER,
    EVENT_TYPE_HEADER,
    SIGNATURE_HEADER,
    build_request,
    serialize_envelope,
)
from src.webhook_dispatcher.signer import WebhookSigner

CHAIN = ChainSettings(explorer_url="https://explorer.example/tx")
TX = "0x" + "12" * 32


class TestPaymentPayload:
    """Payload contents per payment status."""

    @pytest.mark.unit
    def test_created_payload(self):
        expires = datetime(2026, 1, 1, 12, 30, tzinfo=timezone.utc)
        payment = PaymentFactory.create(expires_at=expires)
        data = payment_payload(payment, CHAIN)
        assert data["id"] == payment.payment_id
        assert data["amount"] == "100.00"
        assert data["currency"] == "USDC"
        assert data["status"] == "created"
        assert data["merchantWallet"] == payment.merchant_wallet
        assert data["expiresAt"] == expires.isoformat()

    @pytest.mark.unit
    def test_confirmed_payload_has_explorer_link(self):
        payment = PaymentFactory.create(
            status=PaymentStatus.CONFIRMED, tx_hash=TX, payer_wallet="0x" + "cd" * 20,
            settlement_time=42,
        )
        data = payment_payload(payment, CHAIN)
        assert data["txHash"] == TX
        assert data["explorerLink"] == f"https://explorer.example/tx/{TX}"
        assert data["settlementTime"] == 42
        assert data["payerWallet"] == "0x" + "cd" * 20

    @pytest.mark.unit
    def test_failed_payload_carries_reason(self):
        payment = PaymentFactory.create(
            status=PaymentStatus.FAILED, metadata={"failureReason": "Transaction reverted"}
        )
        assert payment_payload(payment, CHAIN)["reason"] == "Transaction reverted"

    @pytest.mark.unit
    def test_refunded_payload_nests_refund(self):
        now = datetime.now(timezone.utc)
        payment = PaymentFactory.create(status=PaymentStatus.REFUNDED, tx_hash=TX)
        refund = Refund(
            refund_id="ref_1", payment_id=payment.payment_id, merchant_id=payment.merchant_id,
            amount=Decimal("40.00"), currency="USDC", status=RefundStatus.COMPLETED,
            created_at=now, updated_at=now, tx_hash="0xrefund",
        )
        data = payment_payload(payment, CHAIN, refund=refund)
        assert data["payment"]["status"] == "refunded"
        assert data["refund"] == {
            "id": "ref_1",
            "amount": "40.00",
            "currency": "USDC",
            "txHash": "0xrefund",
            "explorerLink": "https://explorer.example/tx/0xrefund",
        }

    @pytest.mark.unit
    def test_amount_keeps_decimal_precision(self):
        payment = PaymentFactory.create(amount=Decimal("0.000001"))
        assert payment_payload(payment, CHAIN)["amount"] == "0.000001"


class TestFreezePayload:
    """Payloads are frozen to JSON when the event is created."""

    @pytest.mark.unit
    def test_decimals_and_datetimes_are_serialized(self):
        when = datetime(2026, 1, 1, tzinfo=timezone.utc)
        frozen = freeze_payload({"amount": Decimal("1.50"), "at": when, "type": EventType.PAYMENT_FAILED})
        assert json.loads(frozen) == {
            "amount": "1.50",
            "at": when.isoformat(),
            "type": "payment.failed",
        }

    @pytest.mark.unit
    def test_unserializable_value_raises(self):
        with pytest.raises(TypeError):
            freeze_payload({"obj": object()})

    @pytest.mark.unit
    def test_event_payload_is_a_fresh_copy(self):
        event = WebhookFactory.create_event()
        event.payload["amount"] = "999"
        assert event.payload["amount"] == "100.00"


class TestEnvelope:
    """Tests for the wire envelope and request headers."""

    @pytest.mark.unit
    def test_envelope_fields(self):
        event = WebhookFactory.create_event(EventType.PAYMENT_CREATED)
        envelope = json.loads(serialize_envelope(event))
        assert envelope == {
            "id": event.event_id,
            "eventType": "payment.created",
            "payload": event.payload,
            "timestamp": event.created_at.isoformat(),
        }

    @pytest.mark.unit
    def test_envelope_bytes_are_stable_across_calls(self):
        event = WebhookFactory.create_event()
        assert serialize_envelope(event) == serialize_envelope(event)

    @pytest.mark.unit
    def test_non_ascii_is_utf8_encoded(self):
        event = WebhookFactory.create_event(payload={"description": "Café München"})
        body = serialize_envelope(event)
        assert "Café München".encode("utf-8") in body

    @pytest.mark.unit
    def test_build_request_signs_exact_body(self):
        endpoint = EndpointFactory.create()
        event = WebhookFactory.create_event(endpoint_id=endpoint.endpoint_id)
        body, headers = build_request(event, endpoint)
        assert body == serialize_envelope(event)
        assert WebhookSigner(endpoint.secret).verify(body, headers[SIGNATURE_HEADER])
        assert headers[EVENT_ID_HEADER] == event.event_id
        assert headers[EVENT_TYPE_HEADER] == "payment.confirmed"
        assert headers["Content-Type"] == "application/json"
