"""Polls the chain for pending payment transactions.

Each pending payment with a transaction hash is checked with exponential
backoff between polls. Confirmed or failed transactions drive the state
machine; payments still unsettled after ``max_polls`` checks fail with a
timeout reason.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from src.lifecycle.errors import ConcurrentModification, InvalidTransition
from src.lifecycle.state_machine import PaymentStateMachine
from src.models.payment import Payment, PaymentStatus

logger = logging.getLogger(__name__)

INITIAL_BACKOFF = 5.0
MAX_BACKOFF = 60.0
MAX_POLLS = 20


@dataclass(frozen=True)
class TxStatus:
    confirmed: bool = False
    failed: bool = False
    error: str | None = None
    block_timestamp: datetime | None = None


@dataclass
class _PollState:
    attempts: int = 0
    last_check: datetime | None = None
    backoff: float = INITIAL_BACKOFF


class TransactionWatcher:
    def __init__(
        self,
        machine: PaymentStateMachine,
        verifier: Callable[[str], TxStatus],
        max_polls: int = MAX_POLLS,
        initial_backoff: float = INITIAL_BACKOFF,
        max_backoff: float = MAX_BACKOFF,
    ):
        self._machine = machine
        self._verifier = verifier
        self.max_polls = max_polls
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._states: dict[str, _PollState] = {}

    def _backoff(self, attempts: int) -> float:
        return min(self.initial_backoff * (2 ** attempts), self.max_backoff)

    @property
    def watching(self) -> frozenset[str]:
        """Ids of payments with poll state held between ticks."""
        return frozenset(self._states)

    def check_pending(self, payments: list[Payment], now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc)
        payments = [p for p in payments if p.status is PaymentStatus.PENDING and p.tx_hash]
        # Payments that left pending some other way (expiry, manual fail) are forgotten
        still_pending = {p.payment_id for p in payments}
        for payment_id in list(self._states):
            if payment_id not in still_pending:
                del self._states[payment_id]
        for payment in payments:
            state = self._states.setdefault(payment.payment_id, _PollState(backoff=self.initial_backoff))
            if state.last_check is not None and now - state.last_check < timedelta(seconds=state.backoff):
                continue
            self._check(payment, state, now)

    def _check(self, payment: Payment, state: _PollState, now: datetime) -> None:
        try:
            status = self._verifier(payment.tx_hash)
        except Exception as e:
            logger.warning("Error checking payment %s: %s", payment.payment_id, e)
            self._count_poll(payment, state, now, give_up=False)
            return

        try:
            if status.confirmed:
                self._machine.confirm_payment(
                    payment.payment_id,
                    payment.tx_hash,
                    payment.payer_wallet,
                    observed_at=status.block_timestamp,
                    expected_version=payment.version,
                )
                self._states.pop(payment.payment_id, None)
                logger.info("Payment %s confirmed (tx %s)", payment.payment_id, payment.tx_hash)
            elif status.failed:
                self._machine.fail_payment(
                    payment.payment_id,
                    status.error or "Transaction failed",
                    expected_version=payment.version,
                )
                self._states.pop(payment.payment_id, None)
                logger.info("Payment %s failed (tx %s): %s", payment.payment_id, payment.tx_hash, status.error)
            else:
                self._count_poll(payment, state, now, give_up=True)
        except (ConcurrentModification, InvalidTransition) as e:
            # Someone else moved the payment; stop watching it
            logger.info("Payment %s changed while watching: %s", payment.payment_id, e)
            self._states.pop(payment.payment_id, None)

    def _count_poll(self, payment: Payment, state: _PollState, now: datetime, give_up: bool) -> None:
        state.attempts += 1
        state.last_check = now
        state.backoff = self._backoff(state.attempts)
        if state.attempts < self.max_polls:
            return
        self._states.pop(payment.payment_id, None)
        if give_up:
            self._machine.fail_payment(
                payment.payment_id,
                "Transaction confirmation timeout",
                expected_version=payment.version,
            )
            logger.info("Payment %s timed out after %d polls", payment.payment_id, state.attempts)

    def run_once(self, now: datetime | None = None) -> None:
        """One watcher tick: poll pending transactions, then expire overdue payments."""
        now = now or datetime.now(timezone.utc)
        pending = [
            p for p in self._machine.list_payments(status=PaymentStatus.PENDING) if p.tx_hash
        ]
        self.check_pending(pending, now)
        self._machine.expire_overdue(now)
