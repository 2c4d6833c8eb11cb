"""
Message templates for order lifecycle events.

The templater is a pure function from ``(event_type, OrderEvent)`` to the
texts the dispatcher needs: headline title and body, priority, delivery
tracking message and estimated delivery window.

Design decisions:
- Templates are simple strings with {variable} placeholders
- An empty title means "no user notification", an empty tracking message
  means "no tracking frame"
- Amounts are rounded half-up to two places and formatted without locale
- Unknown event types render to an empty message with ETA "Unknown"
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from shared.models import EventType, OrderEvent, Priority


CENTS = Decimal("0.01")
UNKNOWN_ETA = "Unknown"


@dataclass(frozen=True)
class MessageTemplate:
    """
    Texts for one event type.

    Placeholders available to every text: ``order_id``, ``amount``,
    ``address``, ``restaurant_id``, ``status``.
    """
    event_type: EventType
    priority: Priority
    title: str = ""
    body: str = ""
    tracking_message: str = ""
    estimated_time: str = ""


@dataclass(frozen=True)
class RenderedMessage:
    """Result of rendering a template against an event."""
    title: str
    body: str
    priority: Priority
    tracking_message: str
    estimated_time: str

    @property
    def notifies_user(self) -> bool:
        return bool(self.title)

    @property
    def tracks_delivery(self) -> bool:
        return bool(self.tracking_message)


# =============================================================================
# Template Definitions
# =============================================================================

TEMPLATES: dict[EventType, MessageTemplate] = {

    EventType.ORDER_CREATED: MessageTemplate(
        event_type=EventType.ORDER_CREATED,
        priority=Priority.LOW,
        title="Order Placed Successfully!",
        body=(
            "Hi! Your order #{order_id} has been placed successfully. "
            "Total amount: ${amount}. We'll notify you once it's confirmed!"
        ),
        tracking_message="Order #{order_id} placed successfully. Restaurant is preparing your order.",
        estimated_time="45-60 minutes",
    ),

    EventType.ORDER_CONFIRMED: MessageTemplate(
        event_type=EventType.ORDER_CONFIRMED,
        priority=Priority.LOW,
        title="Order Confirmed!",
        body=(
            "Great news! Your order #{order_id} has been confirmed and is being prepared. "
            "Estimated delivery time: 30-45 minutes."
        ),
        tracking_message="Order #{order_id} confirmed! The restaurant is now preparing your delicious meal.",
        estimated_time="30-45 minutes",
    ),

    # Kitchen milestone: tracking only, no headline
    EventType.ORDER_PREPARED: MessageTemplate(
        event_type=EventType.ORDER_PREPARED,
        priority=Priority.LOW,
        tracking_message="Order #{order_id} is prepared and waiting for a delivery partner.",
        estimated_time="15-25 minutes",
    ),

    EventType.ORDER_OUT_FOR_DELIVERY: MessageTemplate(
        event_type=EventType.ORDER_OUT_FOR_DELIVERY,
        priority=Priority.MEDIUM,
        title="Out for Delivery!",
        body="Your order #{order_id} is out for delivery! Your food will arrive soon at {address}",
        tracking_message=(
            "Your order is on the way! Delivery person has picked up order #{order_id} "
            "and is heading to {address}"
        ),
        estimated_time="10-15 minutes",
    ),

    EventType.ORDER_DELIVERED: MessageTemplate(
        event_type=EventType.ORDER_DELIVERED,
        priority=Priority.MEDIUM,
        title="Order Delivered!",
        body=(
            "Your order #{order_id} has been delivered! "
            "Thank you for ordering with us. Enjoy your meal!"
        ),
        tracking_message=(
            "Order #{order_id} delivered successfully! "
            "Hope you enjoy your meal. Please rate your experience!"
        ),
        estimated_time="Delivered",
    ),

    EventType.ORDER_CANCELLED: MessageTemplate(
        event_type=EventType.ORDER_CANCELLED,
        priority=Priority.HIGH,
        title="Order Cancelled",
        body=(
            "Unfortunately, your order #{order_id} has been cancelled. "
            "If you were charged, the refund will be processed within 3-5 business days."
        ),
    ),
}

EMPTY_MESSAGE = RenderedMessage(
    title="",
    body="",
    priority=Priority.LOW,
    tracking_message="",
    estimated_time=UNKNOWN_ETA,
)


# =============================================================================
# Template Access Functions
# =============================================================================

def format_amount(amount: Union[Decimal, int, float, str]) -> str:
    """Fixed two-decimal representation, rounding half-up, locale independent."""
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return format(value.quantize(CENTS, rounding=ROUND_HALF_UP), "f")


def _coerce(event_type: Union[EventType, str]) -> Optional[EventType]:
    if isinstance(event_type, EventType):
        return event_type
    return EventType.parse(event_type)


def get_template(event_type: Union[EventType, str]) -> Optional[MessageTemplate]:
    """Get a template by event type, None when the type is unknown."""
    known = _coerce(event_type)
    if known is None:
        return None
    return TEMPLATES.get(known)


def priority_for(event_type: Union[EventType, str]) -> Priority:
    template = get_template(event_type)
    return template.priority if template else Priority.LOW


def estimated_delivery_time(event_type: Union[EventType, str]) -> str:
    """Delivery window shown on tracking frames; "Unknown" when not defined."""
    template = get_template(event_type)
    if template is None or not template.estimated_time:
        return UNKNOWN_ETA
    return template.estimated_time


def render_event(event_type: Union[EventType, str], event: OrderEvent) -> RenderedMessage:
    """
    Render the texts for an event.

    Args:
        event_type: The lifecycle tag to render (usually ``event.event_type``)
        event: The order event supplying the variables

    Returns:
        RenderedMessage; fields are empty strings where the event type
        produces no notification or no tracking update.
    """
    template = get_template(event_type)
    if template is None:
        return EMPTY_MESSAGE

    context = {
        "order_id": event.order_id,
        "amount": format_amount(event.total_amount),
        "address": event.delivery_address,
        "restaurant_id": event.restaurant_id,
        "status": event.status,
    }
    return RenderedMessage(
        title=template.title.format(**context),
        body=template.body.format(**context),
        priority=template.priority,
        tracking_message=template.tracking_message.format(**context),
        estimated_time=template.estimated_time,
    )
