"""Repository capabilities the core depends on, one per entity.

Implementations must return detached copies: mutating a returned object
has no effect until it is passed back through ``save``.
"""

from abc import ABC, abstractmethod
from typing import Callable

from src.models.invoice import Invoice
from src.models.payment import Payment, PaymentStatus
from src.models.refund import Refund
from src.models.webhook import EventType, WebhookEndpoint


class PaymentRepository(ABC):
    @abstractmethod
    def add(self, payment: Payment) -> Payment: ...

    @abstractmethod
    def get(self, payment_id: str) -> Payment | None: ...

    @abstractmethod
    def save(self, payment: Payment, expected_version: int) -> Payment:
        """Store ``payment`` if the stored version still equals ``expected_version``.

        Raises ConcurrentModification otherwise.
        """

    @abstractmethod
    def list(
        self, merchant_id: str | None = None, status: PaymentStatus | None = None
    ) -> list[Payment]: ...


class InvoiceRepository(ABC):
    @abstractmethod
    def add(self, invoice: Invoice) -> Invoice:
        """Raises DuplicateInvoiceNumber if the merchant already uses the number."""

    @abstractmethod
    def get(self, invoice_id: str) -> Invoice | None: ...

    @abstractmethod
    def save(self, invoice: Invoice, expected_version: int) -> Invoice: ...

    @abstractmethod
    def list(self, merchant_id: str | None = None) -> list[Invoice]: ...


class RefundRepository(ABC):
    @abstractmethod
    def add(self, refund: Refund) -> Refund: ...

    @abstractmethod
    def get(self, refund_id: str) -> Refund | None: ...

    @abstractmethod
    def save(self, refund: Refund, expected_version: int) -> Refund: ...

    @abstractmethod
    def list_for_payment(self, payment_id: str) -> list[Refund]: ...


class WebhookEndpointRepository(ABC):
    @abstractmethod
    def add(self, endpoint: WebhookEndpoint) -> WebhookEndpoint: ...

    @abstractmethod
    def get(self, endpoint_id: str) -> WebhookEndpoint | None: ...

    @abstractmethod
    def save(self, endpoint: WebhookEndpoint) -> WebhookEndpoint: ...

    @abstractmethod
    def update(self, endpoint_id: str, mutate: Callable[[WebhookEndpoint], None]) -> WebhookEndpoint:
        """Apply ``mutate`` to the stored endpoint and save it as one atomic step.

        Raises ``NotFound`` if the endpoint is gone. ``mutate`` must not call
        back into the repository.
        """

    @abstractmethod
    def delete(self, endpoint_id: str) -> None: ...

    @abstractmethod
    def list_for_merchant(self, merchant_id: str) -> list[WebhookEndpoint]: ...

    def subscribed(self, merchant_id: str, event_type: EventType) -> list[WebhookEndpoint]:
        """Active endpoints of the merchant listening to ``event_type``."""
        return [
            e for e in self.list_for_merchant(merchant_id)
            if e.subscribes_to(event_type)
        ]
