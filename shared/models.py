"""
Domain models for the live order notification service.

Two families of records live here:
- OrderEvent, the inbound record published by the order service on the
  ``order-events`` topic
- the live payloads pushed to connected clients (OrderNotification,
  DeliveryTracking, Broadcast, Welcome) plus the SubscribeAck status record

Design decisions:
- Using Pydantic for validation and serialization
- Python attributes are snake_case, wire names are camelCase via aliases
- Payloads are a tagged union discriminated by ``type``
- Amounts on payloads are pre-formatted strings with exactly two decimals
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


# =============================================================================
# Enums
# =============================================================================

class EventType(str, Enum):
    """
    Order lifecycle event types emitted by the order service.

    Happy path: CREATED -> CONFIRMED -> PREPARED -> OUT_FOR_DELIVERY -> DELIVERED.
    CANCELLED is a terminal branch reachable from any non-terminal state.
    """
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    ORDER_PREPARED = "ORDER_PREPARED"
    ORDER_OUT_FOR_DELIVERY = "ORDER_OUT_FOR_DELIVERY"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    ORDER_CANCELLED = "ORDER_CANCELLED"

    @classmethod
    def parse(cls, value: str) -> Optional["EventType"]:
        """Return the matching member, or None for an unknown tag."""
        try:
            return cls(value)
        except ValueError:
            return None


class Priority(str, Enum):
    """Urgency hint shown by clients."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# =============================================================================
# Inbound event
# =============================================================================

class OrderEvent(BaseModel):
    """
    A single order lifecycle event, immutable once received.

    ``event_type`` is kept as a plain string so that an unknown tag still
    decodes; the dispatcher decides what to do with it.
    """
    order_id: int = Field(..., ge=INT64_MIN, le=INT64_MAX)
    user_id: int = Field(..., ge=INT64_MIN, le=INT64_MAX, description="Routing key")
    restaurant_id: int = Field(..., ge=INT64_MIN, le=INT64_MAX)
    total_amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    status: str = Field(..., description="Free-form order status from the producer")
    delivery_address: str
    created_at: Optional[datetime] = Field(default=None, description="Stamped by the producer")
    event_type: str

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @field_validator("created_at")
    @classmethod
    def _as_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @property
    def user_key(self) -> str:
        """String form of the user id, used for registry and partition keys."""
        return str(self.user_id)

    @property
    def known_type(self) -> Optional[EventType]:
        return EventType.parse(self.event_type)

    def __str__(self) -> str:
        return (
            f"OrderEvent(order={self.order_id}, user={self.user_id}, "
            f"type={self.event_type}, status={self.status})"
        )


# =============================================================================
# Live payloads (server -> client)
# =============================================================================

class LivePayload(BaseModel):
    """Common base: camelCase on the wire, immutable."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_record(self) -> dict[str, Any]:
        """Serialize to the field-keyed record sent to clients."""
        return self.model_dump(by_alias=True, mode="json")


class OrderNotification(LivePayload):
    """Headline notification for an order event."""
    type: Literal["ORDER_NOTIFICATION"] = "ORDER_NOTIFICATION"
    title: str
    message: str
    event_type: str
    order_id: int
    restaurant_id: int
    total_amount: str
    status: str
    priority: Priority
    timestamp: str


class DeliveryTracking(LivePayload):
    """Courier-style progress update for an order."""
    type: Literal["DELIVERY_TRACKING"] = "DELIVERY_TRACKING"
    order_id: int
    status: str
    event_type: str
    message: str
    delivery_address: str
    estimated_time: str
    priority: Priority
    timestamp: str


class Broadcast(LivePayload):
    """Announcement delivered to every connected client."""
    type: Literal["BROADCAST"] = "BROADCAST"
    title: str
    message: str
    timestamp: str


class Welcome(LivePayload):
    """Greeting sent to a session in reply to ``/app/connect``."""
    type: Literal["WELCOME"] = "WELCOME"
    message: str = "Connected to live notifications"
    user_id: Optional[str] = None
    timestamp: str


LivePayloadUnion = Annotated[
    Union[OrderNotification, DeliveryTracking, Broadcast, Welcome],
    Field(discriminator="type"),
]

live_payload_adapter: TypeAdapter = TypeAdapter(LivePayloadUnion)


def parse_live_payload(record: dict[str, Any]) -> LivePayload:
    """Rebuild a typed payload from a received record."""
    return live_payload_adapter.validate_python(record)


class SubscribeAck(BaseModel):
    """Status record returned to a session after ``/app/subscribe``."""
    status: str = "subscribed"
    user_id: str
    message: str = "Successfully subscribed to live notifications"

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
