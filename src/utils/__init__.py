from .crypto import generate_signature, generate_webhook_secret, verify_signature

__all__ = ["generate_signature", "generate_webhook_secret", "verify_signature"]
