"""Tests for proof recording of confirmed payments."""

from unittest.mock import MagicMock

import pytest

from src.config.settings import ChainSettings, Settings
from src.lifecycle.proof import ProofRecordingBridge, RegistryProofBridge, generate_invoice_hash
from src.lifecycle.state_machine import PaymentStateMachine
from src.models.payment import PaymentStatus
from src.utils.factories import PaymentFactory

TX = "0x" + "ab" * 32
CONFIGURED = ChainSettings(registry_address="0x" + "01" * 20)


class _ExplodingBridge(ProofRecordingBridge):
    def record_proof(self, payment):
        raise RuntimeError("rpc unavailable")


class TestInvoiceHash:
    """Tests for generate_invoice_hash()."""

    @pytest.mark.unit
    def test_hash_format(self):
        h = generate_invoice_hash("pay_1", "0xmerchant", "100.00")
        assert h.startswith("0x")
        assert len(h) == 66
        assert h == generate_invoice_hash("pay_1", "0xmerchant", "100.00")

    @pytest.mark.unit
    def test_hash_depends_on_amount(self):
        assert generate_invoice_hash("pay_1", "0xm", "1") != generate_invoice_hash("pay_1", "0xm", "2")


class TestRegistryProofBridge:
    """Tests for RegistryProofBridge.record_proof()."""

    @pytest.mark.unit
    def test_records_once_per_payment(self):
        submitter = MagicMock(return_value="0xproof")
        bridge = RegistryProofBridge(CONFIGURED, submitter)
        payment = PaymentFactory.create(status=PaymentStatus.CONFIRMED, tx_hash=TX)

        assert bridge.record_proof(payment) == "0xproof"
        assert bridge.record_proof(payment) == "0xproof"
        submitter.assert_called_once()
        status = bridge.get_proof_status(payment.payment_id)
        assert status["exists"] is True
        assert status["proofTxHash"] == "0xproof"
        assert status["invoiceHash"] == generate_invoice_hash(
            payment.payment_id, payment.merchant_wallet, "100.00"
        )

    @pytest.mark.unit
    def test_unconfigured_registry_is_skipped(self):
        submitter = MagicMock()
        bridge = RegistryProofBridge(ChainSettings(), submitter)
        payment = PaymentFactory.create(status=PaymentStatus.CONFIRMED, tx_hash=TX)
        assert bridge.record_proof(payment) is None
        submitter.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "status,tx_hash",
        [(PaymentStatus.PENDING, TX), (PaymentStatus.CONFIRMED, None)],
    )
    def test_ineligible_payments(self, status, tx_hash):
        submitter = MagicMock()
        bridge = RegistryProofBridge(CONFIGURED, submitter)
        assert bridge.record_proof(PaymentFactory.create(status=status, tx_hash=tx_hash)) is None
        submitter.assert_not_called()

    @pytest.mark.unit
    def test_submitter_failure_returns_none(self):
        bridge = RegistryProofBridge(CONFIGURED, MagicMock(side_effect=ConnectionError("rpc down")))
        payment = PaymentFactory.create(status=PaymentStatus.CONFIRMED, tx_hash=TX)
        assert bridge.record_proof(payment) is None
        assert bridge.get_proof_status(payment.payment_id) == {"exists": False}


class TestProofFromStateMachine:
    """Confirmation schedules proof recording without depending on it."""

    @pytest.mark.unit
    def test_confirmation_triggers_proof(self, payments, publisher):
        submitter = MagicMock(return_value="0xproof")
        machine = PaymentStateMachine(
            payments, publisher, Settings(chain=CONFIGURED),
            proof_bridge=RegistryProofBridge(CONFIGURED, submitter),
        )
        payment = machine.create_payment("merch_test", "100.00")
        machine.confirm_payment(payment.payment_id, TX)

        assert machine.wait_for_proofs(timeout=5) == ["0xproof"]
        recorded = submitter.call_args[0][1]
        assert recorded.payment_id == payment.payment_id
        machine.close()

    @pytest.mark.unit
    def test_bridge_failure_does_not_affect_transition(self, payments, publisher):
        machine = PaymentStateMachine(payments, publisher, proof_bridge=_ExplodingBridge())
        payment = machine.create_payment("merch_test", "100.00")

        confirmed = machine.confirm_payment(payment.payment_id, TX)

        assert confirmed.status is PaymentStatus.CONFIRMED
        assert machine.wait_for_proofs(timeout=5) == [None]
        assert machine.get_payment(payment.payment_id).status is PaymentStatus.CONFIRMED
        machine.close()

    @pytest.mark.unit
    def test_other_transitions_do_not_record(self, payments, publisher):
        bridge = MagicMock(spec=ProofRecordingBridge)
        machine = PaymentStateMachine(payments, publisher, proof_bridge=bridge)
        payment = machine.create_payment("merch_test", "100.00")
        machine.fail_payment(payment.payment_id, "reverted")
        bridge.is_eligible.assert_not_called()
        assert machine.wait_for_proofs() == []
        machine.close()
