"""
Tests for the notification dispatcher.

These tests walk one order through its lifecycle and check exactly what a
client subscribed as user 7 receives.
"""

import logging

import pytest

from live_notifications.dispatcher import NotificationDispatcher
from live_notifications.events import (
    order_cancelled,
    order_confirmed,
    order_created,
    order_delivered,
    order_event,
    order_out_for_delivery,
    order_prepared,
)
from shared.channels import BoundedOutboundChannel, LoggingOutboundChannel

NOTIFICATIONS = "/user/7/queue/notifications"
TRACKING = "/user/7/queue/delivery-tracking"


class TestLifecycleScenarios:
    """One scenario per lifecycle event of order #42."""

    def test_place(self, dispatcher, subscribe, outbound, order_fields):
        session = subscribe("7")

        dispatcher.dispatch(order_created(**order_fields))

        notification, tracking = session.drain()
        assert notification.destination == NOTIFICATIONS
        assert notification.body == {
            "type": "ORDER_NOTIFICATION",
            "title": "Order Placed Successfully!",
            "message": (
                "Hi! Your order #42 has been placed successfully. "
                "Total amount: $18.50. We'll notify you once it's confirmed!"
            ),
            "eventType": "ORDER_CREATED",
            "orderId": 42,
            "restaurantId": 3,
            "totalAmount": "18.50",
            "status": "NEW",
            "priority": "LOW",
            "timestamp": "2024-05-01T12:30:00",
        }
        assert tracking.destination == TRACKING
        assert tracking.body == {
            "type": "DELIVERY_TRACKING",
            "orderId": 42,
            "status": "NEW",
            "eventType": "ORDER_CREATED",
            "message": "Order #42 placed successfully. Restaurant is preparing your order.",
            "deliveryAddress": "1 Main St",
            "estimatedTime": "45-60 minutes",
            "priority": "LOW",
            "timestamp": "2024-05-01T12:30:00",
        }
        assert outbound.get_sent_count() == 1

    def test_confirmed(self, dispatcher, subscribe, order_fields):
        session = subscribe("7")

        dispatcher.dispatch(order_confirmed(**order_fields))

        notification, tracking = session.drain()
        assert notification.body["title"] == "Order Confirmed!"
        assert notification.body["priority"] == "LOW"
        assert tracking.body["estimatedTime"] == "30-45 minutes"

    def test_prepared_is_tracking_only(self, dispatcher, subscribe, outbound, order_fields):
        session = subscribe("7")

        result = dispatcher.dispatch(order_prepared(**order_fields))

        [tracking] = session.drain()
        assert tracking.destination == TRACKING
        assert tracking.body["estimatedTime"] == "15-25 minutes"
        assert not result.notification_sent
        assert outbound.get_sent_count() == 0

    def test_out_for_delivery(self, dispatcher, subscribe, order_fields):
        session = subscribe("7")

        dispatcher.dispatch(order_out_for_delivery(**order_fields))

        notification, tracking = session.drain()
        assert notification.body["title"] == "Out for Delivery!"
        assert notification.body["priority"] == "MEDIUM"
        assert "heading to 1 Main St" in tracking.body["message"]
        assert tracking.body["estimatedTime"] == "10-15 minutes"

    def test_delivered(self, dispatcher, subscribe, order_fields):
        session = subscribe("7")

        dispatcher.dispatch(order_delivered(**order_fields))

        notification, tracking = session.drain()
        assert notification.body["title"] == "Order Delivered!"
        assert tracking.body["estimatedTime"] == "Delivered"

    def test_cancelled(self, dispatcher, subscribe, outbound, order_fields):
        session = subscribe("7")

        result = dispatcher.dispatch(order_cancelled(**order_fields))

        [notification] = session.drain()
        assert notification.destination == NOTIFICATIONS
        assert notification.body["title"] == "Order Cancelled"
        assert notification.body["priority"] == "HIGH"
        assert not result.tracking_sent
        sent = outbound.find_message_to("7")
        assert sent.subject == "Order Cancelled"

    def test_unknown_event_type(self, dispatcher, subscribe, outbound, caplog):
        session = subscribe("7")
        event = order_event("ORDER_REFUNDED", order_id=42, user_id=7, total_amount="18.50")

        with caplog.at_level(logging.INFO, logger="dispatcher"):
            result = dispatcher.dispatch(event)

        assert not result.known
        assert session.drain() == []
        assert outbound.get_sent_count() == 0
        lines = [r for r in caplog.records if r.name == "dispatcher"]
        assert len(lines) == 1
        assert "ORDER_REFUNDED" in lines[0].getMessage()

    def test_multi_session_fan_out(self, dispatcher, subscribe, outbound, order_fields):
        a, b = subscribe("7"), subscribe("7")

        result = dispatcher.dispatch(order_out_for_delivery(**order_fields))

        frames_a, frames_b = a.drain(), b.drain()
        assert frames_a == frames_b
        assert [f.destination for f in frames_a] == [NOTIFICATIONS, TRACKING]
        assert result.notification_sessions == 2
        assert outbound.get_sent_count() == 1


class TestOrdering:

    def test_notification_precedes_tracking(self, dispatcher, subscribe, order_fields):
        session = subscribe("7")

        dispatcher.dispatch(order_created(**order_fields))

        assert [f.body["type"] for f in session.drain()] == ["ORDER_NOTIFICATION", "DELIVERY_TRACKING"]

    def test_events_arrive_in_dispatch_order(self, dispatcher, subscribe, order_fields):
        session = subscribe("7")
        factories = [order_created, order_confirmed, order_prepared, order_out_for_delivery, order_delivered]

        for factory in factories:
            dispatcher.dispatch(factory(**order_fields))

        event_types = []
        for frame in session.drain():
            if not event_types or event_types[-1] != frame.body["eventType"]:
                event_types.append(frame.body["eventType"])
        assert event_types == [
            "ORDER_CREATED", "ORDER_CONFIRMED", "ORDER_PREPARED",
            "ORDER_OUT_FOR_DELIVERY", "ORDER_DELIVERED",
        ]

    def test_out_of_order_events_are_dispatched_as_received(self, dispatcher, subscribe, order_fields):
        session = subscribe("7")

        dispatcher.dispatch(order_delivered(**order_fields))
        dispatcher.dispatch(order_created(**order_fields))

        assert [f.body["eventType"] for f in session.drain()] == [
            "ORDER_DELIVERED", "ORDER_DELIVERED", "ORDER_CREATED", "ORDER_CREATED",
        ]


class TestOutbound:

    def test_no_sessions_still_sends_outbound(self, dispatcher, outbound, order_fields):
        result = dispatcher.dispatch(order_confirmed(**order_fields))

        assert result.notification_sessions == 0
        assert outbound.get_sent_count() == 1

    def test_slow_outbound_is_abandoned(self, transport, clock, subscribe, order_fields):
        slow = LoggingOutboundChannel(delay=0.5)
        dispatcher = NotificationDispatcher(transport, slow, clock=clock, outbound_timeout=0.05)
        session = subscribe("7")

        result = dispatcher.dispatch(order_confirmed(**order_fields))

        assert result.outbound.timed_out
        assert len(session.drain()) == 2
        dispatcher.outbound.shutdown()

    def test_failed_outbound_does_not_raise(self, transport, clock, order_fields):
        dispatcher = NotificationDispatcher(
            transport, LoggingOutboundChannel(fail_rate=1.0), clock=clock, outbound_timeout=1.0,
        )

        result = dispatcher.dispatch(order_confirmed(**order_fields))

        assert not result.outbound.success

    def test_outbound_wrapped_once(self, transport, outbound):
        bounded = BoundedOutboundChannel(outbound)

        assert NotificationDispatcher(transport, bounded).outbound is bounded
        assert NotificationDispatcher(transport, outbound, outbound_timeout=None).outbound is outbound


@pytest.mark.parametrize("factory", [order_created, order_out_for_delivery, order_cancelled])
def test_payloads_are_deterministic_with_fixed_clock(factory, transport, outbound, clock, subscribe, order_fields):
    dispatcher = NotificationDispatcher(transport, outbound, clock=clock, outbound_timeout=None)
    session = subscribe("7")

    dispatcher.dispatch(factory(**order_fields))
    first = session.drain()
    dispatcher.dispatch(factory(**order_fields))

    assert session.drain() == first
