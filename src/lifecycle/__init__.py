"""Lifecycle rules for payments, invoices and refunds.

Import the services from their modules (``src.lifecycle.state_machine``,
``src.lifecycle.invoices``, ...); only the error types are re-exported here
so that storage code can raise them without importing the services.
"""

from .errors import (
    AlreadyRefunded,
    ConcurrentModification,
    DuplicateInvoiceNumber,
    EndpointInUse,
    InvalidEndpoint,
    InvalidTransition,
    NotFound,
    RefundExceedsPayment,
    TxHashConflict,
    ValidationError,
)

__all__ = [
    "AlreadyRefunded", "ConcurrentModification", "DuplicateInvoiceNumber",
    "EndpointInUse", "InvalidEndpoint", "InvalidTransition", "NotFound",
    "RefundExceedsPayment", "TxHashConflict", "ValidationError",
]
