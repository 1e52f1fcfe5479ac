from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class RefundStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Refund:
    refund_id: str
    payment_id: str
    merchant_id: str
    amount: Decimal
    currency: str
    status: RefundStatus
    created_at: datetime
    updated_at: datetime
    tx_hash: str | None = None
    reason: str | None = None
    version: int = 1
