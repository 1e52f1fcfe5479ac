from .settings import ChainSettings, DeliverySettings, Settings, load_settings

__all__ = ["ChainSettings", "DeliverySettings", "Settings", "load_settings"]
