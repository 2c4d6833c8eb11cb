"""
Live order notification pipeline.

This package turns order lifecycle events into live pushes:
- The consumer pulls OrderEvents from the order-events topic
- The dispatcher renders them and fans them out per user
- The transport delivers frames to every live session of that user
"""

from live_notifications.consumer import OrderEventConsumer
from live_notifications.dispatcher import DispatchResult, NotificationDispatcher
from live_notifications.event_bus import BusRecord, InMemoryBus
from live_notifications.events import EventDecodeError, decode_order_event, encode_order_event
from live_notifications.registry import RegistryInvariantError, SessionRegistry
from live_notifications.transport import (
    ClientFrame,
    Destinations,
    LiveChannelTransport,
    ServerFrame,
    Session,
    SessionLimitExceeded,
    UnknownSessionError,
)

__all__ = [
    "OrderEventConsumer",
    "DispatchResult",
    "NotificationDispatcher",
    "BusRecord",
    "InMemoryBus",
    "EventDecodeError",
    "decode_order_event",
    "encode_order_event",
    "RegistryInvariantError",
    "SessionRegistry",
    "ClientFrame",
    "Destinations",
    "LiveChannelTransport",
    "ServerFrame",
    "Session",
    "SessionLimitExceeded",
    "UnknownSessionError",
]
