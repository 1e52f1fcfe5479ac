import copy
import threading
from typing import Callable

from src.lifecycle.errors import ConcurrentModification, DuplicateInvoiceNumber, NotFound
from src.models.invoice import Invoice
from src.models.payment import Payment, PaymentStatus
from src.models.refund import Refund
from src.models.webhook import WebhookEndpoint
from src.storage.base import (
    InvoiceRepository,
    PaymentRepository,
    RefundRepository,
    WebhookEndpointRepository,
)


class _VersionedTable:
    """Thread-safe id -> record map with compare-and-set on ``version``."""

    def __init__(self, entity: str, id_field: str):
        self._entity = entity
        self._id_field = id_field
        self._rows: dict[str, object] = {}
        self._lock = threading.Lock()

    def add(self, record):
        key = getattr(record, self._id_field)
        with self._lock:
            if key in self._rows:
                raise ValueError(f"{self._entity} {key} already exists")
            self._rows[key] = copy.deepcopy(record)
        return copy.deepcopy(record)

    def get(self, key: str):
        with self._lock:
            row = self._rows.get(key)
            return copy.deepcopy(row) if row is not None else None

    def save(self, record, expected_version: int):
        key = getattr(record, self._id_field)
        with self._lock:
            current = self._rows.get(key)
            if current is None:
                raise NotFound(self._entity, key)
            if current.version != expected_version:
                raise ConcurrentModification(self._entity, key, expected_version, current.version)
            stored = copy.deepcopy(record)
            stored.version = expected_version + 1
            self._rows[key] = stored
            return copy.deepcopy(stored)

    def select(self, predicate) -> list:
        with self._lock:
            return [copy.deepcopy(r) for r in self._rows.values() if predicate(r)]


class InMemoryPaymentRepository(PaymentRepository):
    def __init__(self):
        self._table = _VersionedTable("Payment", "payment_id")

    def add(self, payment: Payment) -> Payment:
        return self._table.add(payment)

    def get(self, payment_id: str) -> Payment | None:
        return self._table.get(payment_id)

    def save(self, payment: Payment, expected_version: int) -> Payment:
        return self._table.save(payment, expected_version)

    def list(
        self, merchant_id: str | None = None, status: PaymentStatus | None = None
    ) -> list[Payment]:
        rows = self._table.select(
            lambda p: (merchant_id is None or p.merchant_id == merchant_id)
            and (status is None or p.status == status)
        )
        return sorted(rows, key=lambda p: p.created_at)


class InMemoryInvoiceRepository(InvoiceRepository):
    def __init__(self):
        self._table = _VersionedTable("Invoice", "invoice_id")
        self._numbers: set[tuple[str, str]] = set()
        self._numbers_lock = threading.Lock()

    def add(self, invoice: Invoice) -> Invoice:
        key = (invoice.merchant_id, invoice.invoice_number)
        with self._numbers_lock:
            if key in self._numbers:
                raise DuplicateInvoiceNumber(
                    f"Invoice number {invoice.invoice_number} already used by merchant "
                    f"{invoice.merchant_id}"
                )
            stored = self._table.add(invoice)
            self._numbers.add(key)
        return stored

    def get(self, invoice_id: str) -> Invoice | None:
        return self._table.get(invoice_id)

    def save(self, invoice: Invoice, expected_version: int) -> Invoice:
        return self._table.save(invoice, expected_version)

    def list(self, merchant_id: str | None = None) -> list[Invoice]:
        rows = self._table.select(lambda i: merchant_id is None or i.merchant_id == merchant_id)
        return sorted(rows, key=lambda i: i.created_at)


class InMemoryRefundRepository(RefundRepository):
    def __init__(self):
        self._table = _VersionedTable("Refund", "refund_id")

    def add(self, refund: Refund) -> Refund:
        return self._table.add(refund)

    def get(self, refund_id: str) -> Refund | None:
        return self._table.get(refund_id)

    def save(self, refund: Refund, expected_version: int) -> Refund:
        return self._table.save(refund, expected_version)

    def list_for_payment(self, payment_id: str) -> list[Refund]:
        rows = self._table.select(lambda r: r.payment_id == payment_id)
        return sorted(rows, key=lambda r: r.created_at)


class InMemoryWebhookEndpointRepository(WebhookEndpointRepository):
    def __init__(self):
        self._rows: dict[str, WebhookEndpoint] = {}
        self._lock = threading.Lock()

    def add(self, endpoint: WebhookEndpoint) -> WebhookEndpoint:
        with self._lock:
            if endpoint.endpoint_id in self._rows:
                raise ValueError(f"Endpoint {endpoint.endpoint_id} already exists")
            self._rows[endpoint.endpoint_id] = copy.deepcopy(endpoint)
        return copy.deepcopy(endpoint)

    def get(self, endpoint_id: str) -> WebhookEndpoint | None:
        with self._lock:
            row = self._rows.get(endpoint_id)
            return copy.deepcopy(row) if row is not None else None

    def save(self, endpoint: WebhookEndpoint) -> WebhookEndpoint:
        with self._lock:
            if endpoint.endpoint_id not in self._rows:
                raise NotFound("Webhook endpoint", endpoint.endpoint_id)
            self._rows[endpoint.endpoint_id] = copy.deepcopy(endpoint)
        return copy.deepcopy(endpoint)

    def update(self, endpoint_id: str, mutate: Callable[[WebhookEndpoint], None]) -> WebhookEndpoint:
        with self._lock:
            row = self._rows.get(endpoint_id)
            if row is None:
                raise NotFound("Webhook endpoint", endpoint_id)
            updated = copy.deepcopy(row)
            mutate(updated)
            self._rows[endpoint_id] = updated
            return copy.deepcopy(updated)

    def delete(self, endpoint_id: str) -> None:
        with self._lock:
            if self._rows.pop(endpoint_id, None) is None:
                raise NotFound("Webhook endpoint", endpoint_id)

    def list_for_merchant(self, merchant_id: str) -> list[WebhookEndpoint]:
        with self._lock:
            rows = [copy.deepcopy(e) for e in self._rows.values() if e.merchant_id == merchant_id]
        return sorted(rows, key=lambda e: e.created_at)
