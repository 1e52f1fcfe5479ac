"""Tests for refunds and the confirmed -> refunded payment transition."""

from decimal import Decimal

import pytest

from src.lifecycle.errors import (
    AlreadyRefunded,
    InvalidTransition,
    NotFound,
    RefundExceedsPayment,
    ValidationError,
)
from src.lifecycle.refunds import RefundLifecycle
from src.models.payment import PaymentStatus
from src.models.refund import RefundStatus
from src.models.webhook import EventType
from src.storage.memory import InMemoryRefundRepository

MERCHANT = "merch_test"
TX = "0x" + "ab" * 32
REFUND_TX = "0x" + "cd" * 32


@pytest.fixture
def refunds(machine):
    return RefundLifecycle(InMemoryRefundRepository(), machine)


@pytest.fixture
def confirmed(machine):
    payment = machine.create_payment(MERCHANT, "100.00")
    return machine.confirm_payment(payment.payment_id, TX)


class TestCreateRefund:
    """Tests for RefundLifecycle.create_refund()."""

    @pytest.mark.unit
    def test_refund_for_confirmed_payment(self, refunds, confirmed):
        refund = refunds.create_refund(confirmed.payment_id, MERCHANT, "40.00", reason="damaged")
        assert refund.status is RefundStatus.PENDING
        assert refund.amount == Decimal("40.00")
        assert refund.currency == "USDC"
        assert refunds.list_refunds(confirmed.payment_id) == [refund]

    @pytest.mark.unit
    def test_payment_must_be_confirmed(self, refunds, machine):
        payment = machine.create_payment(MERCHANT, "100.00")
        with pytest.raises(InvalidTransition):
            refunds.create_refund(payment.payment_id, MERCHANT, "10")

    @pytest.mark.unit
    def test_amount_cannot_exceed_payment(self, refunds, confirmed):
        with pytest.raises(RefundExceedsPayment):
            refunds.create_refund(confirmed.payment_id, MERCHANT, "100.01")

    @pytest.mark.unit
    def test_other_merchant_cannot_refund(self, refunds, confirmed):
        with pytest.raises(NotFound):
            refunds.create_refund(confirmed.payment_id, "merch_other", "10")

    @pytest.mark.unit
    def test_currency_must_match(self, refunds, confirmed):
        with pytest.raises(ValidationError):
            refunds.create_refund(confirmed.payment_id, MERCHANT, "10", currency="EURC")

    @pytest.mark.unit
    def test_float_amount_is_rejected(self, refunds, confirmed):
        with pytest.raises(ValidationError):
            refunds.create_refund(confirmed.payment_id, MERCHANT, 10.5)


class TestCompleteRefund:
    """Tests for RefundLifecycle.complete_refund()."""

    @pytest.mark.unit
    def test_completion_refunds_the_payment(self, refunds, confirmed, machine, add_endpoint, event_store):
        add_endpoint(events=frozenset({EventType.PAYMENT_REFUNDED}))
        refund = refunds.create_refund(confirmed.payment_id, MERCHANT, "40.00")

        completed = refunds.complete_refund(refund.refund_id, REFUND_TX)

        assert completed.status is RefundStatus.COMPLETED
        assert completed.tx_hash == REFUND_TX
        assert machine.get_payment(confirmed.payment_id).status is PaymentStatus.REFUNDED
        [event] = event_store.list_events()
        assert event.event_type is EventType.PAYMENT_REFUNDED
        assert event.payload["payment"]["status"] == "refunded"
        assert event.payload["refund"]["id"] == refund.refund_id
        assert event.payload["refund"]["txHash"] == REFUND_TX

    @pytest.mark.unit
    def test_processing_then_complete(self, refunds, confirmed):
        refund = refunds.create_refund(confirmed.payment_id, MERCHANT, "40.00")
        assert refunds.start_processing(refund.refund_id).status is RefundStatus.PROCESSING
        assert refunds.complete_refund(refund.refund_id, REFUND_TX).status is RefundStatus.COMPLETED

    @pytest.mark.unit
    def test_refunded_payment_rejects_new_refunds(self, refunds, confirmed):
        refund = refunds.create_refund(confirmed.payment_id, MERCHANT, "40.00")
        refunds.complete_refund(refund.refund_id, REFUND_TX)
        with pytest.raises(AlreadyRefunded):
            refunds.create_refund(confirmed.payment_id, MERCHANT, "10")

    @pytest.mark.unit
    def test_second_pending_refund_cannot_complete(self, refunds, confirmed, machine):
        first = refunds.create_refund(confirmed.payment_id, MERCHANT, "40.00")
        second = refunds.create_refund(confirmed.payment_id, MERCHANT, "20.00")
        refunds.complete_refund(first.refund_id, REFUND_TX)

        with pytest.raises(AlreadyRefunded):
            refunds.complete_refund(second.refund_id, "0x" + "ee" * 32)
        assert refunds.get_refund(second.refund_id).status is RefundStatus.PENDING
        assert machine.get_payment(confirmed.payment_id).version == 3

    @pytest.mark.unit
    def test_tx_hash_is_required(self, refunds, confirmed):
        refund = refunds.create_refund(confirmed.payment_id, MERCHANT, "40.00")
        with pytest.raises(ValidationError):
            refunds.complete_refund(refund.refund_id, "")

    @pytest.mark.unit
    def test_failed_refund_is_terminal(self, refunds, confirmed, machine):
        refund = refunds.create_refund(confirmed.payment_id, MERCHANT, "40.00")
        failed = refunds.fail_refund(refund.refund_id, "insufficient balance")
        assert failed.status is RefundStatus.FAILED
        assert failed.reason == "insufficient balance"
        with pytest.raises(InvalidTransition):
            refunds.complete_refund(refund.refund_id, REFUND_TX)
        assert machine.get_payment(confirmed.payment_id).status is PaymentStatus.CONFIRMED

    @pytest.mark.unit
    def test_unknown_refund(self, refunds):
        with pytest.raises(NotFound):
            refunds.get_refund("ref_missing")
