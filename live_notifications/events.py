"""
Wire codec for order lifecycle events.

The order service publishes each OrderEvent on the ``order-events`` topic
as a JSON object keyed by the camelCase field names, with the user id (in
string form) as the message key so all events of a user land on the same
partition.

Design decisions:
- Unknown fields are ignored, missing required fields fail the decode
- An unknown ``eventType`` is NOT a decode failure (the dispatcher drops it)
- Amounts are encoded as fixed two-decimal strings to avoid float drift
- Helper functions create properly structured events for producers,
  demos and tests
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import ValidationError

from shared.clock import format_local_datetime
from shared.models import EventType, OrderEvent
from shared.templates import format_amount


class EventDecodeError(ValueError):
    """Raised when a raw payload is not a valid OrderEvent."""

    def __init__(self, message: str, raw: Union[bytes, str, None] = None):
        super().__init__(message)
        self.raw = raw


def decode_order_event(raw: Union[bytes, str]) -> OrderEvent:
    """
    Decode a wire payload into an OrderEvent.

    Raises:
        EventDecodeError: If the payload is not JSON, not an object, or
            misses/violates a required field
    """
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise EventDecodeError(f"payload is not valid JSON: {e}", raw) from e

    if not isinstance(data, dict):
        raise EventDecodeError(f"payload must be a JSON object, got {type(data).__name__}", raw)

    try:
        return OrderEvent.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise EventDecodeError(f"invalid order event ({fields})", raw) from e


def encode_order_event(event: OrderEvent) -> bytes:
    """Encode an OrderEvent as the JSON record published on the topic."""
    record = {
        "orderId": event.order_id,
        "userId": event.user_id,
        "restaurantId": event.restaurant_id,
        "totalAmount": format_amount(event.total_amount),
        "status": event.status,
        "deliveryAddress": event.delivery_address,
        "createdAt": format_local_datetime(event.created_at) if event.created_at else None,
        "eventType": event.event_type,
    }
    return json.dumps(record).encode("utf-8")


def message_key(event: OrderEvent) -> bytes:
    """Partition key: the user id in string form."""
    return event.user_key.encode("utf-8")


# =============================================================================
# Event Factories
# =============================================================================

def order_event(
    event_type: Union[EventType, str],
    order_id: int,
    user_id: int,
    restaurant_id: int = 1,
    total_amount: Union[Decimal, str, int, float] = "0.00",
    status: Optional[str] = None,
    delivery_address: str = "",
    created_at: Optional[datetime] = None,
) -> OrderEvent:
    """
    Create an OrderEvent for any lifecycle tag.

    ``status`` defaults to the tag without its ``ORDER_`` prefix.
    """
    tag = event_type.value if isinstance(event_type, EventType) else event_type
    return OrderEvent(
        order_id=order_id,
        user_id=user_id,
        restaurant_id=restaurant_id,
        total_amount=Decimal(str(total_amount)),
        status=status if status is not None else tag.removeprefix("ORDER_"),
        delivery_address=delivery_address,
        created_at=created_at,
        event_type=tag,
    )


def order_created(order_id: int, user_id: int, restaurant_id: int, total_amount, delivery_address: str, **kwargs) -> OrderEvent:
    """Published when a new order is placed."""
    kwargs.setdefault("status", "NEW")
    return order_event(
        EventType.ORDER_CREATED, order_id, user_id, restaurant_id, total_amount,
        delivery_address=delivery_address, **kwargs,
    )


def order_confirmed(order_id: int, user_id: int, restaurant_id: int, total_amount, delivery_address: str, **kwargs) -> OrderEvent:
    return order_event(
        EventType.ORDER_CONFIRMED, order_id, user_id, restaurant_id, total_amount,
        delivery_address=delivery_address, **kwargs,
    )


def order_prepared(order_id: int, user_id: int, restaurant_id: int, total_amount, delivery_address: str, **kwargs) -> OrderEvent:
    return order_event(
        EventType.ORDER_PREPARED, order_id, user_id, restaurant_id, total_amount,
        delivery_address=delivery_address, **kwargs,
    )


def order_out_for_delivery(order_id: int, user_id: int, restaurant_id: int, total_amount, delivery_address: str, **kwargs) -> OrderEvent:
    """Published when a courier picks the order up."""
    return order_event(
        EventType.ORDER_OUT_FOR_DELIVERY, order_id, user_id, restaurant_id, total_amount,
        delivery_address=delivery_address, **kwargs,
    )


def order_delivered(order_id: int, user_id: int, restaurant_id: int, total_amount, delivery_address: str, **kwargs) -> OrderEvent:
    return order_event(
        EventType.ORDER_DELIVERED, order_id, user_id, restaurant_id, total_amount,
        delivery_address=delivery_address, **kwargs,
    )


def order_cancelled(order_id: int, user_id: int, restaurant_id: int, total_amount, delivery_address: str, **kwargs) -> OrderEvent:
    return order_event(
        EventType.ORDER_CANCELLED, order_id, user_id, restaurant_id, total_amount,
        delivery_address=delivery_address, **kwargs,
    )
