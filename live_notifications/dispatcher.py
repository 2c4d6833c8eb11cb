"""
Notification dispatcher.

Turns one decoded OrderEvent into what the user sees:
1. a headline ORDER_NOTIFICATION on /user/{id}/queue/notifications
2. a DELIVERY_TRACKING update on /user/{id}/queue/delivery-tracking
3. an email/SMS style send on the OutboundChannel

The steps always run in that order so a client sees the headline before
the tracking detail. Each step is skipped when the templater gives it
nothing to say (an empty title or tracking message).

Design decisions:
- Stateless about the order state machine: out-of-order events are
  dispatched as they come
- Unknown event types are logged and dropped, with no frames and no
  outbound call
- Outbound sends are bounded by a time budget and never abort the live path
- Timestamps come from an injected clock (UTC by default)
"""

import logging
from dataclasses import dataclass
from typing import Optional

from live_notifications.transport import Destinations, LiveChannelTransport
from shared.channels import BoundedOutboundChannel, OutboundChannel, OutboundResult
from shared.clock import Clock, UTCClock, format_local_datetime
from shared.models import DeliveryTracking, OrderEvent, OrderNotification
from shared.templates import estimated_delivery_time, format_amount, render_event

logger = logging.getLogger("dispatcher")


@dataclass
class DispatchResult:
    """What happened to one event (for logs, metrics and tests)."""
    event_type: str
    user_id: str
    known: bool = True
    notification_sessions: int = 0
    tracking_sessions: int = 0
    notification_sent: bool = False
    tracking_sent: bool = False
    outbound: Optional[OutboundResult] = None


class NotificationDispatcher:
    """
    Orchestrates templater -> transport -> outbound channel for each event.

    Example:
        dispatcher = NotificationDispatcher(transport, LoggingOutboundChannel())
        dispatcher.dispatch(order_created(order_id=42, user_id=7, ...))
    """

    def __init__(
        self,
        transport: LiveChannelTransport,
        outbound: OutboundChannel,
        clock: Optional[Clock] = None,
        outbound_timeout: Optional[float] = 0.25,
    ):
        """
        Args:
            transport: Live channel transport used for fan-out
            outbound: Email/SMS side channel
            clock: Source of payload timestamps (defaults to UTC wall clock)
            outbound_timeout: Seconds an outbound send may take before it is
                abandoned; None to call the channel directly
        """
        self.transport = transport
        self.clock = clock or UTCClock()
        if outbound_timeout is not None and not isinstance(outbound, BoundedOutboundChannel):
            outbound = BoundedOutboundChannel(outbound, timeout=outbound_timeout)
        self.outbound = outbound

    def dispatch(self, event: OrderEvent) -> DispatchResult:
        """Dispatch one event. Never raises for transport or outbound failures."""
        user_id = event.user_key
        result = DispatchResult(event_type=event.event_type, user_id=user_id)

        if event.known_type is None:
            logger.info(f"Unknown order event type: {event.event_type} (order={event.order_id})")
            result.known = False
            return result

        logger.info(f"Received order event: {event}")
        message = render_event(event.event_type, event)
        timestamp = format_local_datetime(self.clock.now())

        if message.notifies_user:
            notification = OrderNotification(
                title=message.title,
                message=message.body,
                event_type=event.event_type,
                order_id=event.order_id,
                restaurant_id=event.restaurant_id,
                total_amount=format_amount(event.total_amount),
                status=event.status,
                priority=message.priority,
                timestamp=timestamp,
            )
            result.notification_sessions = self.transport.send_to_user(
                user_id, Destinations.NOTIFICATIONS, notification,
            )
            result.notification_sent = True
            logger.info(
                f"Live notification sent to user {user_id} "
                f"({result.notification_sessions} sessions): {message.title}"
            )

        if message.tracks_delivery:
            tracking = DeliveryTracking(
                order_id=event.order_id,
                status=event.status,
                event_type=event.event_type,
                message=message.tracking_message,
                delivery_address=event.delivery_address,
                estimated_time=estimated_delivery_time(event.event_type),
                priority=message.priority,
                timestamp=timestamp,
            )
            result.tracking_sessions = self.transport.send_to_user(
                user_id, Destinations.DELIVERY_TRACKING, tracking,
            )
            result.tracking_sent = True
            logger.info(
                f"Live delivery tracking sent to user {user_id} "
                f"({result.tracking_sessions} sessions): {message.tracking_message}"
            )

        if message.notifies_user:
            result.outbound = self._send_outbound(user_id, message.title, message.body)

        return result

    def _send_outbound(self, user_id: str, subject: str, body: str) -> Optional[OutboundResult]:
        try:
            outcome = self.outbound.send(user_id, subject, body)
        except Exception as e:
            logger.error(f"Outbound send to user {user_id} failed: {e}")
            return None
        if not outcome.success:
            logger.warning(f"Outbound send to user {user_id} did not complete: {outcome.error}")
        return outcome
