"""
Demonstration scripts for the live notification pipeline.

These functions wire the whole pipeline in-process (in-memory bus ->
consumer -> dispatcher -> transport) and print the frames a subscribed
client would receive.
"""

import logging

from live_notifications.consumer import OrderEventConsumer
from live_notifications.dispatcher import NotificationDispatcher
from live_notifications.event_bus import InMemoryBus
from live_notifications.events import (
    order_cancelled,
    order_confirmed,
    order_created,
    order_delivered,
    order_event,
    order_out_for_delivery,
    order_prepared,
)
from live_notifications.registry import SessionRegistry
from live_notifications.transport import ClientFrame, Destinations, LiveChannelTransport, Session
from shared.channels import LoggingOutboundChannel

# Configure logging to see what's happening
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

USER_ID = 7
ORDER = {
    "order_id": 42,
    "user_id": USER_ID,
    "restaurant_id": 3,
    "total_amount": "18.50",
    "delivery_address": "1 Main St",
}


class DemoPipeline:
    """Everything needed to push events through the pipeline in-process."""

    def __init__(self):
        self.bus = InMemoryBus(partitions=3)
        self.registry = SessionRegistry()
        self.transport = LiveChannelTransport(self.registry)
        self.outbound = LoggingOutboundChannel()
        self.dispatcher = NotificationDispatcher(self.transport, self.outbound)
        self.consumer = OrderEventConsumer(self.bus.consumer(), self.dispatcher, poll_timeout=0.0)

    def connect(self, user_id: int = USER_ID) -> Session:
        session = self.transport.open_session()
        self.transport.handle_frame(
            session.session_id,
            ClientFrame(destination=Destinations.APP_SUBSCRIBE, body={"userId": str(user_id)}),
        )
        session.drain()  # CONNECTED + subscribe ack
        return session

    def publish_and_consume(self, *events) -> None:
        for event in events:
            self.bus.publish_event(event)
        self.consumer.run_once(timeout=0.0)


def _print_frames(session: Session) -> list:
    frames = session.drain()
    for frame in frames:
        body = frame.body
        text = body.get("title") or body.get("message")
        print(f"  [{frame.destination}] {body.get('type')}: {text}")
    if not frames:
        print("  (no frames)")
    return frames


def run_lifecycle_demo():
    """
    Demonstrate the happy-path lifecycle of one order.

    Shows, per event, the headline and tracking frames received by a
    client subscribed as user 7.
    """
    print("\n" + "=" * 70)
    print("LIVE DEMO: Order lifecycle for order #42")
    print("=" * 70 + "\n")

    pipeline = DemoPipeline()
    session = pipeline.connect()

    for factory in (order_created, order_confirmed, order_prepared, order_out_for_delivery, order_delivered):
        event = factory(**ORDER)
        print("-" * 70)
        print(f"EVENT: {event.event_type}")
        print("-" * 70)
        pipeline.publish_and_consume(event)
        _print_frames(session)

    print(f"\nOutbound sends: {pipeline.outbound.get_sent_count()}")
    return pipeline


def run_cancellation_demo():
    """Demonstrate the cancelled branch: headline only, no tracking frame."""
    print("\n" + "=" * 70)
    print("LIVE DEMO: Order cancelled")
    print("=" * 70 + "\n")

    pipeline = DemoPipeline()
    session = pipeline.connect()
    pipeline.publish_and_consume(order_cancelled(**ORDER))
    _print_frames(session)

    for msg in pipeline.outbound.sent_messages:
        print(f"  {msg}")
    return pipeline


def run_fanout_demo():
    """Demonstrate fan-out to two sessions of the same user, plus an unknown event."""
    print("\n" + "=" * 70)
    print("LIVE DEMO: Multi-session fan-out")
    print("=" * 70 + "\n")

    pipeline = DemoPipeline()
    session_a = pipeline.connect()
    session_b = pipeline.connect()

    pipeline.publish_and_consume(order_out_for_delivery(**ORDER))
    print("Session A:")
    _print_frames(session_a)
    print("Session B:")
    _print_frames(session_b)

    print("\nUnknown event ORDER_REFUNDED:")
    pipeline.publish_and_consume(order_event("ORDER_REFUNDED", 42, USER_ID, total_amount="18.50"))
    _print_frames(session_a)
    return pipeline


def run_all():
    run_lifecycle_demo()
    run_cancellation_demo()
    run_fanout_demo()
