from .messaging import MessagingClient, WhatsAppGatewayClient
from .fanout import DeliveryPacer, NotificationFanout, build_resolution_message
from .worker import FanoutWorker

__all__ = [
    "MessagingClient",
    "WhatsAppGatewayClient",
    "DeliveryPacer",
    "NotificationFanout",
    "build_resolution_message",
    "FanoutWorker",
]
