"""Best-effort on-chain notarization of confirmed payments.

The core only depends on ``is_eligible`` and ``record_proof``. Recording
must never raise into the caller: errors are logged and ``None`` returned.
"""

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from src.config.settings import ChainSettings
from src.models.payment import Payment, PaymentStatus

logger = logging.getLogger(__name__)


def generate_invoice_hash(invoice_id: str, merchant_address: str, amount: str) -> str:
    data = f"{invoice_id}{merchant_address}{amount}"
    return "0x" + hashlib.sha256(data.encode("utf-8")).hexdigest()


@dataclass
class ProofRecord:
    payment_id: str
    invoice_hash: str
    proof_tx_hash: str
    created_at: datetime


class ProofRecordingBridge(ABC):
    def is_eligible(self, payment: Payment) -> bool:
        return payment.status is PaymentStatus.CONFIRMED and bool(payment.tx_hash)

    @abstractmethod
    def record_proof(self, payment: Payment) -> str | None:
        """Return a proof reference, or None if nothing was recorded."""


class RegistryProofBridge(ProofRecordingBridge):
    """Submits invoice hashes to the payment registry contract.

    ``submitter`` performs the actual contract call and returns the proof
    transaction hash; without it, or without a configured registry
    address, recording is skipped.
    """

    def __init__(
        self,
        chain: ChainSettings,
        submitter: Callable[[str, Payment], str] | None = None,
    ):
        self.chain = chain
        self._submitter = submitter
        self._proofs: dict[str, ProofRecord] = {}
        self._lock = threading.Lock()

    def record_proof(self, payment: Payment) -> str | None:
        if not self.is_eligible(payment):
            return None
        with self._lock:
            existing = self._proofs.get(payment.payment_id)
        if existing is not None:
            return existing.proof_tx_hash
        if not self.chain.registry_address or self._submitter is None:
            logger.info("Payment registry not configured, skipping proof for %s", payment.payment_id)
            return None

        invoice_hash = generate_invoice_hash(
            payment.payment_id, payment.merchant_wallet or "", str(payment.amount)
        )
        try:
            proof_tx = self._submitter(invoice_hash, payment)
        except Exception:
            logger.exception("Proof submission failed for payment %s", payment.payment_id)
            return None
        if not proof_tx:
            return None

        record = ProofRecord(
            payment_id=payment.payment_id,
            invoice_hash=invoice_hash,
            proof_tx_hash=proof_tx,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._proofs.setdefault(payment.payment_id, record)
        logger.info("Recorded proof %s for payment %s", proof_tx, payment.payment_id)
        return proof_tx

    def get_proof_status(self, payment_id: str) -> dict:
        with self._lock:
            proof = self._proofs.get(payment_id)
        if proof is None:
            return {"exists": False}
        return {
            "exists": True,
            "invoiceHash": proof.invoice_hash,
            "proofTxHash": proof.proof_tx_hash,
            "createdAt": proof.created_at.isoformat(),
        }
