"""Integration tests for per-endpoint delivery order."""

import pytest

from src.models.webhook import EventStatus


pytestmark = pytest.mark.integration

MERCHANT = "merch_test"
TX = "0x" + "ab" * 32


class TestDeliveryOrdering:
    """Events reach an endpoint in the order their transitions happened."""

    def test_transitions_arrive_in_order(self, platform, subscribed_endpoint, merchant_server, drain):
        payment = platform.payments.create_payment(MERCHANT, "100.00")
        platform.payments.submit_transaction(payment.payment_id, TX)
        platform.payments.confirm_payment(payment.payment_id, TX)

        drain()

        types = [r["envelope"]["eventType"] for r in merchant_server.get_received_events()]
        assert types == ["payment.created", "payment.confirmed"]

    def test_failing_head_holds_back_later_events(self, platform, subscribed_endpoint, merchant_server):
        merchant_server.set_response_sequence([500, 500])
        first = platform.payments.create_payment(MERCHANT, "1.00")
        second = platform.payments.create_payment(MERCHANT, "2.00")

        for _ in range(3):
            platform.dispatcher.run_once()

        ids = [r["envelope"]["payload"]["id"] for r in merchant_server.get_received_events()]
        assert ids == [first.payment_id, first.payment_id, first.payment_id]
        events = {e.source_id: e for e in platform.event_store.list_events()}
        assert events[first.payment_id].status is EventStatus.DELIVERED
        assert events[second.payment_id].status is EventStatus.PENDING

        platform.dispatcher.run_once()
        assert merchant_server.get_received_events()[-1]["envelope"]["payload"]["id"] == second.payment_id

    def test_dead_event_does_not_block_forever(self, platform, subscribed_endpoint, merchant_server, drain):
        merchant_server.set_response_sequence([410])
        first = platform.payments.create_payment(MERCHANT, "1.00")
        second = platform.payments.create_payment(MERCHANT, "2.00")

        drain()

        ids = [r["envelope"]["payload"]["id"] for r in merchant_server.get_received_events()]
        assert ids == [first.payment_id, second.payment_id]
