import hashlib
import hmac
import secrets


def generate_signature(raw_body: bytes, secret: str) -> str:
    """Generate an HMAC-SHA256 hex signature over the exact body bytes."""
    return hmac.new(
        secret.encode("utf-8"),
        raw_body,
        hashlib.sha256,
    ).hexdigest()


def verify_signature(raw_body: bytes, secret: str, signature: str) -> bool:
    """Verify an HMAC-SHA256 signature in constant time."""
    if not isinstance(signature, str):
        return False
    expected = generate_signature(raw_body, secret)
    # compare_digest rejects non-ASCII str input with TypeError
    try:
        return hmac.compare_digest(expected, signature.lower())
    except TypeError:
        return False


def generate_webhook_secret() -> str:
    return f"whsec_{secrets.token_hex(24)}"


def idempotency_key(source_id: str, event_type: str, endpoint_id: str, revision: int) -> str:
    """Deterministic key for one logical event of one transition."""
    material = f"{source_id}|{event_type}|{endpoint_id}|{revision}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()
