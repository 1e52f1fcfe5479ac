from .payment import Payment, PaymentStatus
from .invoice import Invoice, InvoiceStatus
from .refund import Refund, RefundStatus
from .webhook import EventStatus, EventType, WebhookEndpoint, WebhookEvent
from .delivery import DeliveryAttempt, DeliveryOutcome

__all__ = [
    "Payment", "PaymentStatus",
    "Invoice", "InvoiceStatus",
    "Refund", "RefundStatus",
    "EventStatus", "EventType", "WebhookEndpoint", "WebhookEvent",
    "DeliveryAttempt", "DeliveryOutcome",
]
