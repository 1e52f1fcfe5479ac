from .base import (
    InvoiceRepository,
    PaymentRepository,
    RefundRepository,
    WebhookEndpointRepository,
)
from .memory import (
    InMemoryInvoiceRepository,
    InMemoryPaymentRepository,
    InMemoryRefundRepository,
    InMemoryWebhookEndpointRepository,
)

__all__ = [
    "InvoiceRepository", "PaymentRepository", "RefundRepository",
    "WebhookEndpointRepository",
    "InMemoryInvoiceRepository", "InMemoryPaymentRepository",
    "InMemoryRefundRepository", "InMemoryWebhookEndpointRepository",
]
