"""
FastAPI application for the live notification service.

This application provides:
1. The live channel: ``/ws`` websocket plus the ``/ws/fallback`` long-poll path
2. Health and info endpoints (``/api/health``, ``/api/info``)
3. An admin broadcast endpoint (``/api/broadcast``)
4. A dev-only event injection endpoint (``/api/events``) when running on
   the in-memory bus

Start-up composes the pipeline explicitly:
    bus client -> OrderEventConsumer -> NotificationDispatcher -> LiveChannelTransport

Run with:
    uvicorn api.main:app --host 0.0.0.0 --port 8083
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from api.live_channel import router as live_channel_router
from live_notifications.consumer import OrderEventConsumer
from live_notifications.dispatcher import NotificationDispatcher
from live_notifications.event_bus import BusClient, InMemoryBus
from live_notifications.events import EventDecodeError, decode_order_event
from live_notifications.registry import SessionRegistry
from live_notifications.transport import LiveChannelTransport
from shared.channels import BoundedOutboundChannel, LoggingOutboundChannel, OutboundChannel
from shared.clock import Clock, UTCClock, format_local_datetime, set_utc_timezone
from shared.config import Settings, load_settings
from shared.models import Broadcast

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger("notification_service")


# Response models
class HealthResponse(BaseModel):
    status: str
    timestamp: str
    application: str
    version: str


class BroadcastRequest(BaseModel):
    title: str = Field(..., min_length=1)
    message: str


class BroadcastResult(BaseModel):
    sessions: int


class PublishResult(BaseModel):
    partition: int
    offset: int


# =============================================================================
# Composition
# =============================================================================

@dataclass
class NotificationServiceContainer:
    """Every collaborator of the running service, wired once at start-up."""
    settings: Settings
    clock: Clock
    registry: SessionRegistry
    transport: LiveChannelTransport
    outbound: BoundedOutboundChannel
    dispatcher: NotificationDispatcher
    consumer: OrderEventConsumer
    bus: Optional[InMemoryBus] = None

    def start(self) -> None:
        self.consumer.start()

    def stop(self) -> None:
        """Stop consuming, then close every session, then drop the registry."""
        self.consumer.stop()
        self.transport.shutdown()
        self.registry.clear()
        self.outbound.shutdown()


def build_service(
    settings: Settings,
    clock: Optional[Clock] = None,
    outbound: Optional[OutboundChannel] = None,
    bus: Optional[InMemoryBus] = None,
    poll_timeout: float = 0.5,
) -> NotificationServiceContainer:
    """
    Compose the pipeline from settings.

    With ``bus.brokers`` configured the consumer reads from Kafka; otherwise
    an in-memory bus is used (and exposed for event injection).
    """
    clock = clock or UTCClock()
    registry = SessionRegistry()
    transport = LiveChannelTransport.from_settings(settings.transport, registry=registry, clock=clock)
    bounded = BoundedOutboundChannel(
        outbound or LoggingOutboundChannel(),
        timeout=settings.outbound.timeout_ms / 1000,
    )
    dispatcher = NotificationDispatcher(transport, bounded, clock=clock)

    client: BusClient
    if settings.bus.brokers:
        from live_notifications.kafka_bus import KafkaBusClient

        client = KafkaBusClient(settings.bus.brokers, settings.bus.topic, settings.bus.group_id)
        bus = None
    else:
        bus = bus or InMemoryBus(partitions=settings.bus.partitions)
        client = bus.consumer(settings.bus.topic, settings.bus.group_id)

    consumer = OrderEventConsumer(client, dispatcher, poll_timeout=poll_timeout)
    return NotificationServiceContainer(
        settings=settings,
        clock=clock,
        registry=registry,
        transport=transport,
        outbound=bounded,
        dispatcher=dispatcher,
        consumer=consumer,
        bus=bus,
    )


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[NotificationServiceContainer] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    With a pre-built ``service`` the app serves it right away; otherwise the
    service is composed from ``settings`` (or the environment) at start-up,
    so importing this module never opens threads or broker connections.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup and shutdown."""
        set_utc_timezone()
        running = app.state.service
        owned = running is None
        if owned:
            running = build_service(settings or load_settings())
            _attach(app, running)
        logger.info(f"Starting {running.settings.application} {running.settings.version}")
        running.start()
        yield
        logger.info("Shutting down")
        running.stop()
        if owned:
            _attach(app, None)

    app = FastAPI(
        title="Live Order Notification Service",
        description="""
        Consumes order lifecycle events and pushes live notifications and
        delivery tracking updates to connected clients.

        ## Live channel

        - `/ws` - websocket sessions
        - `/ws/fallback/*` - long-poll sessions for clients without websockets
        """,
        version=(service.settings if service else settings or Settings()).version,
        lifespan=lifespan,
    )
    _attach(app, service)

    # Any origin, including non-browser clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(live_channel_router)
    app.include_router(_api_routes())
    return app


def _attach(app: FastAPI, service: Optional[NotificationServiceContainer]) -> None:
    app.state.service = service
    app.state.transport = service.transport if service else None


def _service(request: Request) -> NotificationServiceContainer:
    return request.app.state.service


def _api_routes():
    router = APIRouter(prefix="/api")

    # =========================================================================
    # Health Check
    # =========================================================================

    @router.get("/health", response_model=HealthResponse, tags=["Health"])
    def health_check(request: Request):
        service = _service(request)
        return HealthResponse(
            status="UP",
            timestamp=format_local_datetime(service.clock.now()),
            application=service.settings.application,
            version=service.settings.version,
        )

    @router.get("/info", tags=["Health"])
    def info(request: Request) -> dict[str, Any]:
        """Service metadata and live counters."""
        service = _service(request)
        settings = service.settings
        return {
            "application": settings.application,
            "version": settings.version,
            "description": "Live order notifications over websocket with long-poll fallback",
            "bus": {
                "mode": "kafka" if settings.bus.brokers else "in-memory",
                "topic": settings.bus.topic,
                "groupId": settings.bus.group_id,
            },
            "transport": {
                "endpoint": "/ws",
                "fallback": "/ws/fallback/sessions",
                "sessions": service.transport.session_count(),
                "users": service.registry.user_count(),
                "maxSessions": settings.transport.max_sessions,
            },
            "consumer": service.consumer.stats(),
        }

    # =========================================================================
    # Admin
    # =========================================================================

    @router.post("/broadcast", response_model=BroadcastResult, tags=["Admin"])
    def broadcast(body: BroadcastRequest, request: Request):
        """Send an announcement to every connected client."""
        service = _service(request)
        payload = Broadcast(
            title=body.title,
            message=body.message,
            timestamp=format_local_datetime(service.clock.now()),
        )
        return BroadcastResult(sessions=service.transport.broadcast(payload))

    @router.post("/events", response_model=PublishResult, status_code=202, tags=["Admin"])
    async def publish_event(request: Request):
        """
        Publish a raw OrderEvent record to the in-memory topic.

        Only available when no Kafka brokers are configured.
        """
        service = _service(request)
        if service.bus is None:
            raise HTTPException(status_code=409, detail="Event injection is only available on the in-memory bus")

        raw = await request.body()
        try:
            event = decode_order_event(raw)
        except EventDecodeError as e:
            raise HTTPException(status_code=422, detail=str(e))

        record = service.bus.publish_event(event, topic=service.settings.bus.topic)
        return PublishResult(partition=record.partition, offset=record.offset)

    return router


app = create_app()
