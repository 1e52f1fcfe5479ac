"""Payment lifecycle state machine.

Every accepted transition queues its webhook events before the new status
is saved, under one lock. If queueing raises, nothing is saved and the
caller may retry; event idempotency keys include the payment revision, so
a retry never duplicates events for the same logical transition.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from src.config.settings import Settings
from src.lifecycle.errors import (
    ConcurrentModification,
    InvalidTransition,
    NotFound,
    TxHashConflict,
    ValidationError,
)
from src.lifecycle.graph import PAYMENT_TRANSITIONS, check_transition
from src.lifecycle.payloads import payment_payload
from src.lifecycle.proof import ProofRecordingBridge
from src.lifecycle.publisher import EventPublisher
from src.models.payment import Payment, PaymentStatus
from src.models.refund import Refund
from src.models.webhook import WebhookEvent
from src.storage.base import PaymentRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_amount(amount) -> Decimal:
    """Accept Decimal, int or str amounts; floats are refused."""
    if isinstance(amount, float):
        raise ValidationError("Amounts must be given as Decimal or string, not float")
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Amount must be positive: {amount!r}")
    return value


@dataclass(frozen=True)
class TransitionEvidence:
    """What the caller observed when it decided on a transition.

    ``expected_version`` is the payment version the decision was based on;
    None skips the optimistic concurrency check.
    """

    expected_version: int | None = None
    tx_hash: str | None = None
    payer_wallet: str | None = None
    reason: str | None = None
    observed_at: datetime | None = None


@dataclass
class TransitionResult:
    payment: Payment
    events: list[WebhookEvent]
    replayed: bool = False


class PaymentStateMachine:
    def __init__(
        self,
        payments: PaymentRepository,
        publisher: EventPublisher,
        settings: Settings | None = None,
        proof_bridge: ProofRecordingBridge | None = None,
        proof_executor: ThreadPoolExecutor | None = None,
    ):
        self._payments = payments
        self._publisher = publisher
        self.settings = settings or Settings()
        self._proof_bridge = proof_bridge
        self._proof_executor = proof_executor
        self._proof_futures: list[Future] = []
        # Guards read-check-publish-save; refunds share it for payment + refund updates
        self.lock = threading.RLock()

    # -- creation and lookup ---------------------------------------------

    def create_payment(
        self,
        merchant_id: str,
        amount,
        currency: str = "USDC",
        merchant_wallet: str | None = None,
        description: str | None = None,
        customer_email: str | None = None,
        expires_in_minutes: int | None = None,
        metadata: dict | None = None,
        now: datetime | None = None,
    ) -> Payment:
        now = now or _utcnow()
        if expires_in_minutes is None:
            expires_in_minutes = self.settings.payment_expiry_minutes
        payment = Payment(
            payment_id=f"pay_{uuid.uuid4().hex[:24]}",
            merchant_id=merchant_id,
            amount=parse_amount(amount),
            currency=currency or "USDC",
            status=PaymentStatus.CREATED,
            created_at=now,
            updated_at=now,
            merchant_wallet=merchant_wallet,
            description=description,
            customer_email=customer_email,
            expires_at=now + timedelta(minutes=expires_in_minutes),
            metadata=dict(metadata or {}),
        )
        with self.lock:
            self._publish(payment)
            stored = self._payments.add(payment)
        logger.info("Created payment %s for merchant %s", stored.payment_id, merchant_id)
        return stored

    def get_payment(self, payment_id: str) -> Payment:
        payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFound("Payment", payment_id)
        return payment

    def list_payments(
        self, merchant_id: str | None = None, status: PaymentStatus | None = None
    ) -> list[Payment]:
        return self._payments.list(merchant_id=merchant_id, status=status)

    # -- transitions ------------------------------------------------------

    def transition(
        self,
        payment_id: str,
        target: PaymentStatus,
        evidence: TransitionEvidence | None = None,
        now: datetime | None = None,
    ) -> Payment:
        return self.apply(payment_id, target, evidence, now).payment

    def apply(
        self,
        payment_id: str,
        target: PaymentStatus,
        evidence: TransitionEvidence | None = None,
        now: datetime | None = None,
        refund: Refund | None = None,
    ) -> TransitionResult:
        """Validate and apply one transition, returning the payment and its queued events.

        Raises NotFound, InvalidTransition, ConcurrentModification or
        TxHashConflict; in every such case nothing is persisted.
        """
        evidence = evidence or TransitionEvidence()
        now = now or _utcnow()
        with self.lock:
            current = self.get_payment(payment_id)

            if evidence.expected_version is not None and current.version != evidence.expected_version:
                if current.status is target and current.version == evidence.expected_version + 1:
                    logger.info(
                        "Payment %s already moved to %s at version %d",
                        payment_id, target.value, current.version,
                    )
                    return TransitionResult(payment=current, events=[], replayed=True)
                raise ConcurrentModification(
                    "Payment", payment_id, evidence.expected_version, current.version
                )

            check_transition("payment", PAYMENT_TRANSITIONS, current.status, target)
            updated = self._with_evidence(current, target, evidence, now)
            updated.version = current.version + 1
            events = self._publish(updated, refund=refund)
            saved = self._payments.save(updated, current.version)

        logger.info(
            "Payment %s: %s -> %s (%d event(s) queued)",
            payment_id, current.status.value, target.value, len(events),
        )
        if saved.status is PaymentStatus.CONFIRMED:
            self._schedule_proof(saved)
        return TransitionResult(payment=saved, events=events)

    def _with_evidence(
        self, current: Payment, target: PaymentStatus, evidence: TransitionEvidence, now: datetime
    ) -> Payment:
        updated = replace(current, status=target, updated_at=now, metadata=dict(current.metadata))
        if evidence.tx_hash:
            if current.tx_hash and current.tx_hash != evidence.tx_hash:
                raise TxHashConflict(
                    f"Payment {current.payment_id} already has transaction {current.tx_hash}"
                )
            updated.tx_hash = evidence.tx_hash
        if evidence.payer_wallet:
            updated.payer_wallet = evidence.payer_wallet
        if target is PaymentStatus.CONFIRMED:
            settled_at = evidence.observed_at or now
            updated.settlement_time = max(0, int((settled_at - current.created_at).total_seconds()))
            updated.updated_at = settled_at
        if target is PaymentStatus.FAILED and evidence.reason:
            updated.metadata["failureReason"] = evidence.reason
        return updated

    def _publish(self, payment: Payment, refund: Refund | None = None) -> list[WebhookEvent]:
        return self._publisher.publish(
            payment.merchant_id,
            "payment",
            payment.status.value,
            source_id=payment.payment_id,
            revision=payment.version,
            payload=payment_payload(payment, self.settings.chain, refund=refund),
        )

    # -- convenience operations ------------------------------------------

    def submit_transaction(
        self,
        payment_id: str,
        tx_hash: str,
        payer_wallet: str | None = None,
        expected_version: int | None = None,
    ) -> Payment:
        """The payer broadcast a transaction; wait for it to settle."""
        return self.transition(
            payment_id,
            PaymentStatus.PENDING,
            TransitionEvidence(expected_version, tx_hash=tx_hash, payer_wallet=payer_wallet),
        )

    def confirm_payment(
        self,
        payment_id: str,
        tx_hash: str,
        payer_wallet: str | None = None,
        observed_at: datetime | None = None,
        expected_version: int | None = None,
    ) -> Payment:
        return self.transition(
            payment_id,
            PaymentStatus.CONFIRMED,
            TransitionEvidence(
                expected_version,
                tx_hash=tx_hash,
                payer_wallet=payer_wallet,
                observed_at=observed_at,
            ),
        )

    def fail_payment(
        self, payment_id: str, reason: str | None = None, expected_version: int | None = None
    ) -> Payment:
        return self.transition(
            payment_id, PaymentStatus.FAILED, TransitionEvidence(expected_version, reason=reason)
        )

    def expire_payment(self, payment_id: str, expected_version: int | None = None) -> Payment:
        return self.transition(
            payment_id, PaymentStatus.EXPIRED, TransitionEvidence(expected_version)
        )

    def expire_overdue(self, now: datetime | None = None) -> list[Payment]:
        """Expire created or pending payments whose deadline has passed."""
        now = now or _utcnow()
        expired = []
        for status in (PaymentStatus.CREATED, PaymentStatus.PENDING):
            for payment in self._payments.list(status=status):
                if payment.expires_at is None or payment.expires_at >= now:
                    continue
                try:
                    expired.append(
                        self.transition(
                            payment.payment_id,
                            PaymentStatus.EXPIRED,
                            TransitionEvidence(payment.version),
                            now=now,
                        )
                    )
                except (ConcurrentModification, InvalidTransition) as e:
                    logger.info("Skipping expiry of %s: %s", payment.payment_id, e)
        return expired

    # -- proof recording --------------------------------------------------

    def _schedule_proof(self, payment: Payment) -> None:
        bridge = self._proof_bridge
        if bridge is None:
            return
        try:
            if not bridge.is_eligible(payment):
                return
            if self._proof_executor is None:
                self._proof_executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="proof-recorder"
                )
            self._proof_futures.append(self._proof_executor.submit(self._record_proof, payment))
        except Exception:
            logger.exception("Could not schedule proof recording for %s", payment.payment_id)

    def _record_proof(self, payment: Payment) -> str | None:
        try:
            reference = self._proof_bridge.record_proof(payment)
        except Exception:
            logger.exception("Proof recording failed for payment %s", payment.payment_id)
            return None
        if reference:
            logger.info("Payment %s notarized as %s", payment.payment_id, reference)
        return reference

    def wait_for_proofs(self, timeout: float | None = None) -> list[str | None]:
        """Block until scheduled proof recordings finish (used at shutdown)."""
        futures, self._proof_futures = self._proof_futures, []
        return [f.result(timeout=timeout) for f in futures]

    def close(self) -> None:
        if self._proof_executor is not None:
            self._proof_executor.shutdown(wait=True)
