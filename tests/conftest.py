"""
Shared pytest fixtures for the live notification service tests.

These fixtures wire fresh pipeline pieces per test so no state leaks
between tests.
"""

from datetime import datetime

import pytest

from live_notifications.dispatcher import NotificationDispatcher
from live_notifications.event_bus import InMemoryBus
from live_notifications.registry import SessionRegistry
from live_notifications.transport import ClientFrame, Destinations, LiveChannelTransport, Session
from shared.channels import LoggingOutboundChannel
from shared.clock import FixedClock


FIXED_NOW = datetime(2024, 5, 1, 12, 30, 0)
FIXED_TIMESTAMP = "2024-05-01T12:30:00"


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at FIXED_NOW."""
    return FixedClock(FIXED_NOW)


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def transport(registry: SessionRegistry, clock: FixedClock) -> LiveChannelTransport:
    """Transport with a tiny send timeout so overflow tests run fast."""
    return LiveChannelTransport(registry, clock=clock, send_timeout=0.01)


@pytest.fixture
def outbound() -> LoggingOutboundChannel:
    """Fresh recording outbound channel for each test."""
    return LoggingOutboundChannel(fail_rate=0.0)


@pytest.fixture
def dispatcher(transport, outbound, clock):
    """Dispatcher with a bounded outbound channel, shut down after the test."""
    dispatcher = NotificationDispatcher(transport, outbound, clock=clock, outbound_timeout=1.0)
    yield dispatcher
    dispatcher.outbound.shutdown()


@pytest.fixture
def bus() -> InMemoryBus:
    return InMemoryBus(partitions=3)


@pytest.fixture
def subscribe(transport: LiveChannelTransport):
    """
    Open a session subscribed as the given user, with its CONNECTED frame
    and subscribe ack already drained.
    """
    def _subscribe(user_id="7") -> Session:
        session = transport.open_session()
        transport.handle_frame(
            session.session_id,
            ClientFrame(destination=Destinations.APP_SUBSCRIBE, body={"userId": str(user_id)}),
        )
        session.drain()
        return session

    return _subscribe


# =============================================================================
# Order Fixtures
# =============================================================================

@pytest.fixture
def order_fields() -> dict:
    """Order 42 for user 7, 18.50 to 1 Main St."""
    return {
        "order_id": 42,
        "user_id": 7,
        "restaurant_id": 3,
        "total_amount": "18.50",
        "delivery_address": "1 Main St",
    }
