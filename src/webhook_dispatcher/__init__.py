from .engine import WebhookDispatcher
from .envelope import build_request, serialize_envelope
from .retry import RetryPolicy
from .logger import DeliveryLogger
from .signer import WebhookSigner

__all__ = [
    "WebhookDispatcher",
    "build_request",
    "serialize_envelope",
    "RetryPolicy",
    "DeliveryLogger",
    "WebhookSigner",
]
