from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class InvoiceStatus(Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


@dataclass
class Invoice:
    invoice_id: str
    merchant_id: str
    invoice_number: str
    amount: Decimal
    currency: str
    status: InvoiceStatus
    customer_email: str
    created_at: datetime
    updated_at: datetime
    customer_name: str | None = None
    payment_id: str | None = None
    due_date: datetime | None = None
    description: str | None = None
    version: int = 1
