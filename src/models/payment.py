from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class PaymentStatus(Enum):
    CREATED = "created"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


@dataclass
class Payment:
    payment_id: str
    merchant_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    created_at: datetime
    updated_at: datetime
    payer_wallet: str | None = None
    merchant_wallet: str | None = None
    tx_hash: str | None = None
    settlement_time: int | None = None  # seconds from creation to confirmation
    expires_at: datetime | None = None
    description: str | None = None
    customer_email: str | None = None
    metadata: dict = field(default_factory=dict)
    version: int = 1
