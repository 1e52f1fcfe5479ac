"""Non-custodial refunds.

The merchant's wallet sends the funds back; this module records the intent
and, once the refund transaction is known, completes the refund and moves
the payment to ``refunded`` in one step under the state machine's lock.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from src.lifecycle.errors import (
    AlreadyRefunded,
    InvalidTransition,
    NotFound,
    RefundExceedsPayment,
    ValidationError,
)
from src.lifecycle.graph import PAYMENT_TRANSITIONS, REFUND_TRANSITIONS, can_transition, check_transition
from src.lifecycle.state_machine import PaymentStateMachine, TransitionEvidence, parse_amount
from src.models.payment import PaymentStatus
from src.models.refund import Refund, RefundStatus
from src.storage.base import RefundRepository

logger = logging.getLogger(__name__)


class RefundLifecycle:
    def __init__(self, refunds: RefundRepository, machine: PaymentStateMachine):
        self._refunds = refunds
        self._machine = machine

    def create_refund(
        self,
        payment_id: str,
        merchant_id: str,
        amount,
        currency: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Refund:
        value = parse_amount(amount)
        now = now or datetime.now(timezone.utc)
        with self._machine.lock:
            payment = self._machine.get_payment(payment_id)
            if payment.merchant_id != merchant_id:
                raise NotFound("Payment", payment_id)
            if payment.status is PaymentStatus.REFUNDED or self._completed_refund(payment_id):
                raise AlreadyRefunded(f"Payment {payment_id} already refunded")
            if payment.status is not PaymentStatus.CONFIRMED:
                raise InvalidTransition("payment", payment.status.value, PaymentStatus.REFUNDED.value)
            if value > payment.amount:
                raise RefundExceedsPayment(
                    f"Refund amount {value} exceeds payment amount {payment.amount}"
                )
            if currency and currency != payment.currency:
                raise ValidationError(
                    f"Refund currency {currency} does not match payment currency {payment.currency}"
                )
            refund = Refund(
                refund_id=f"ref_{uuid.uuid4().hex[:24]}",
                payment_id=payment_id,
                merchant_id=merchant_id,
                amount=value,
                currency=payment.currency,
                status=RefundStatus.PENDING,
                reason=reason,
                created_at=now,
                updated_at=now,
            )
            stored = self._refunds.add(refund)
        logger.info("Created refund %s for payment %s", stored.refund_id, payment_id)
        return stored

    def get_refund(self, refund_id: str) -> Refund:
        refund = self._refunds.get(refund_id)
        if refund is None:
            raise NotFound("Refund", refund_id)
        return refund

    def list_refunds(self, payment_id: str) -> list[Refund]:
        return self._refunds.list_for_payment(payment_id)

    def _completed_refund(self, payment_id: str) -> Refund | None:
        for refund in self._refunds.list_for_payment(payment_id):
            if refund.status is RefundStatus.COMPLETED:
                return refund
        return None

    def _move(self, refund_id: str, target: RefundStatus, **changes) -> Refund:
        with self._machine.lock:
            current = self.get_refund(refund_id)
            check_transition("refund", REFUND_TRANSITIONS, current.status, target)
            updated = replace(
                current, status=target, updated_at=datetime.now(timezone.utc), **changes
            )
            return self._refunds.save(updated, current.version)

    def start_processing(self, refund_id: str) -> Refund:
        return self._move(refund_id, RefundStatus.PROCESSING)

    def fail_refund(self, refund_id: str, reason: str | None = None) -> Refund:
        changes = {"reason": reason} if reason else {}
        refund = self._move(refund_id, RefundStatus.FAILED, **changes)
        logger.info("Refund %s failed: %s", refund_id, reason)
        return refund

    def complete_refund(self, refund_id: str, tx_hash: str) -> Refund:
        """Complete the refund and move its payment from confirmed to refunded.

        Both are validated before either is written; the payment.refunded
        event carries the refund snapshot.
        """
        if not tx_hash:
            raise ValidationError("tx_hash is required to complete a refund")
        with self._machine.lock:
            current = self.get_refund(refund_id)
            check_transition("refund", REFUND_TRANSITIONS, current.status, RefundStatus.COMPLETED)
            if self._completed_refund(current.payment_id):
                raise AlreadyRefunded(f"Payment {current.payment_id} already refunded")
            payment = self._machine.get_payment(current.payment_id)
            if not can_transition(PAYMENT_TRANSITIONS, payment.status, PaymentStatus.REFUNDED):
                raise InvalidTransition(
                    "payment", payment.status.value, PaymentStatus.REFUNDED.value
                )

            completed = replace(
                current,
                status=RefundStatus.COMPLETED,
                tx_hash=tx_hash,
                updated_at=datetime.now(timezone.utc),
            )
            self._machine.apply(
                payment.payment_id,
                PaymentStatus.REFUNDED,
                TransitionEvidence(expected_version=payment.version),
                refund=completed,
            )
            saved = self._refunds.save(completed, current.version)
        logger.info("Refund %s completed (tx %s)", refund_id, tx_hash)
        return saved
