from src.utils.crypto import generate_signature, verify_signature


class WebhookSigner:
    """Signs and verifies raw webhook bodies using HMAC-SHA256."""

    def __init__(self, secret: str):
        self.secret = secret

    def sign(self, raw_body: bytes) -> str:
        return generate_signature(raw_body, self.secret)

    def verify(self, raw_body: bytes, signature: str) -> bool:
        return verify_signature(raw_body, self.secret, signature)
