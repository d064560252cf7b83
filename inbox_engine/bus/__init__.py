from .client import BusHandlers, EventBusClient, SubscriptionHandle
from .decoder import decode_frame
from .transport import SseTransport, Transport, iter_sse_data

__all__ = [
    "BusHandlers",
    "EventBusClient",
    "SubscriptionHandle",
    "SseTransport",
    "Transport",
    "decode_frame",
    "iter_sse_data",
]
