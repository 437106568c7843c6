from .providers import DeliveryProvider, HttpDeliveryProvider, LoggingDeliveryProvider

__all__ = ["DeliveryProvider", "HttpDeliveryProvider", "LoggingDeliveryProvider"]
