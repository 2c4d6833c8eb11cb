"""
Shared building blocks of the live notification service.

This package contains code used across the pipeline and the API:
- Domain models (OrderEvent and the live payload records)
- Message templates for each order lifecycle event
- Outbound (email/SMS) channels
- Clock and configuration
"""

from shared.models import (
    EventType,
    Priority,
    OrderEvent,
    OrderNotification,
    DeliveryTracking,
    Broadcast,
    Welcome,
    SubscribeAck,
)
from shared.channels import LoggingOutboundChannel, BoundedOutboundChannel, OutboundResult
from shared.config import Settings, load_settings

__all__ = [
    "EventType",
    "Priority",
    "OrderEvent",
    "OrderNotification",
    "DeliveryTracking",
    "Broadcast",
    "Welcome",
    "SubscribeAck",
    "LoggingOutboundChannel",
    "BoundedOutboundChannel",
    "OutboundResult",
    "Settings",
    "load_settings",
]
