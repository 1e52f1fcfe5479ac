from .container import PaymentPlatform, build_platform

__all__ = ["PaymentPlatform", "build_platform"]
