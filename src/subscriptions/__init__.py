from .manager import SubscriptionManager

__all__ = ["SubscriptionManager"]
