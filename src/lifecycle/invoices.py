import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from src.lifecycle.errors import (
    ConcurrentModification,
    DuplicateInvoiceNumber,
    NotFound,
    ValidationError,
)
from src.lifecycle.graph import INVOICE_TRANSITIONS, check_transition
from src.lifecycle.payloads import invoice_payload
from src.lifecycle.publisher import EventPublisher
from src.lifecycle.state_machine import parse_amount
from src.models.invoice import Invoice, InvoiceStatus
from src.models.payment import PaymentStatus
from src.storage.base import InvoiceRepository, PaymentRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceEvidence:
    expected_version: int | None = None
    payment_id: str | None = None
    manual: bool = False  # merchant explicitly marked the invoice paid


class InvoiceLifecycle:
    """Invoice states: draft, sent, overdue, then paid or cancelled (both terminal)."""

    def __init__(
        self,
        invoices: InvoiceRepository,
        payments: PaymentRepository,
        publisher: EventPublisher,
    ):
        self._invoices = invoices
        self._payments = payments
        self._publisher = publisher
        self._lock = threading.RLock()

    def create_invoice(
        self,
        merchant_id: str,
        invoice_number: str,
        amount,
        customer_email: str,
        currency: str = "USDC",
        customer_name: str | None = None,
        due_date: datetime | None = None,
        description: str | None = None,
        payment_id: str | None = None,
        now: datetime | None = None,
    ) -> Invoice:
        if not invoice_number:
            raise ValidationError("invoice_number is required")
        if not customer_email:
            raise ValidationError("customer_email is required")
        now = now or datetime.now(timezone.utc)
        invoice = Invoice(
            invoice_id=f"inv_{uuid.uuid4().hex[:24]}",
            merchant_id=merchant_id,
            invoice_number=invoice_number,
            amount=parse_amount(amount),
            currency=currency or "USDC",
            status=InvoiceStatus.DRAFT,
            customer_email=customer_email,
            customer_name=customer_name,
            payment_id=payment_id,
            due_date=due_date,
            description=description,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if any(
                i.invoice_number == invoice_number for i in self._invoices.list(merchant_id)
            ):
                # Checked up front so no event is queued for a rejected invoice
                raise DuplicateInvoiceNumber(
                    f"Invoice number {invoice_number} already used by merchant {merchant_id}"
                )
            self._publish(invoice, "created")
            stored = self._invoices.add(invoice)
        logger.info("Created invoice %s (%s)", stored.invoice_id, invoice_number)
        return stored

    def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self._invoices.get(invoice_id)
        if invoice is None:
            raise NotFound("Invoice", invoice_id)
        return invoice

    def transition(
        self,
        invoice_id: str,
        target: InvoiceStatus,
        evidence: InvoiceEvidence | None = None,
        now: datetime | None = None,
    ) -> Invoice:
        evidence = evidence or InvoiceEvidence()
        now = now or datetime.now(timezone.utc)
        with self._lock:
            current = self.get_invoice(invoice_id)
            if evidence.expected_version is not None and current.version != evidence.expected_version:
                raise ConcurrentModification(
                    "Invoice", invoice_id, evidence.expected_version, current.version
                )
            check_transition("invoice", INVOICE_TRANSITIONS, current.status, target)

            updated = replace(current, status=target, updated_at=now)
            if target is InvoiceStatus.PAID:
                updated.payment_id = self._settling_payment(current, evidence)
            updated.version = current.version + 1
            self._publish(updated, target.value)
            saved = self._invoices.save(updated, current.version)
        logger.info("Invoice %s: %s -> %s", invoice_id, current.status.value, target.value)
        return saved

    def _settling_payment(self, invoice: Invoice, evidence: InvoiceEvidence) -> str | None:
        payment_id = evidence.payment_id or invoice.payment_id
        if payment_id is None:
            if evidence.manual:
                return None
            raise ValidationError(
                f"Invoice {invoice.invoice_id} needs a confirmed payment or a manual mark-paid"
            )
        payment = self._payments.get(payment_id)
        if payment is None or payment.merchant_id != invoice.merchant_id:
            raise NotFound("Payment", payment_id)
        if payment.status is not PaymentStatus.CONFIRMED and not evidence.manual:
            raise ValidationError(
                f"Payment {payment_id} is {payment.status.value}, not confirmed"
            )
        return payment_id

    def _publish(self, invoice: Invoice, status: str):
        return self._publisher.publish(
            invoice.merchant_id,
            "invoice",
            status,
            source_id=invoice.invoice_id,
            revision=invoice.version,
            payload=invoice_payload(invoice),
        )

    def send(self, invoice_id: str) -> Invoice:
        return self.transition(invoice_id, InvoiceStatus.SENT)

    def cancel(self, invoice_id: str) -> Invoice:
        return self.transition(invoice_id, InvoiceStatus.CANCELLED)

    def mark_paid(
        self, invoice_id: str, payment_id: str | None = None, manual: bool = False
    ) -> Invoice:
        return self.transition(
            invoice_id, InvoiceStatus.PAID, InvoiceEvidence(payment_id=payment_id, manual=manual)
        )

    def mark_overdue(self, now: datetime | None = None) -> list[Invoice]:
        """Move sent invoices past their due date to overdue."""
        now = now or datetime.now(timezone.utc)
        overdue = []
        for invoice in self._invoices.list():
            if invoice.status is not InvoiceStatus.SENT:
                continue
            if invoice.due_date is None or invoice.due_date >= now:
                continue
            try:
                overdue.append(
                    self.transition(
                        invoice.invoice_id,
                        InvoiceStatus.OVERDUE,
                        InvoiceEvidence(expected_version=invoice.version),
                        now=now,
                    )
                )
            except ConcurrentModification as e:
                logger.info("Skipping overdue check of %s: %s", invoice.invoice_id, e)
        return overdue
