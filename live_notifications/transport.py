"""
Live channel transport: sessions, frames and delivery.

Clients open a session over the ``/ws`` websocket endpoint (or the HTTP
long-poll fallback for environments without websockets) and talk in JSON
frames modelled on STOMP destinations:

    client -> server   {"destination": "/app/subscribe", "body": {"userId": "7"}}
    server -> client   {"command": "MESSAGE",
                        "destination": "/user/7/queue/notifications",
                        "body": {...payload record...}}

Control destinations:
- /app/connect      reply with a WELCOME payload to this session
- /app/subscribe    attach the session to the user, reply on /topic/status
- /app/track-order  remember the order id on the session

Server destinations:
- /user/{userId}/queue/notifications       headline notifications
- /user/{userId}/queue/delivery-tracking   tracking updates
- /topic/announcements                     broadcast to every session
- /topic/status                            subscribe acknowledgement

Every session owns a bounded, thread-safe send queue. Producers (the
consumer flow, the broadcast flow, the session's own reader) offer frames
with a short timeout; a frame that does not fit is dropped for that
session and the session is marked unhealthy. After ``drop_threshold``
consecutive drops the session is closed. Only the session's sending flow
(the websocket pump or the fallback poll) takes frames off the queue.

SECURITY NOTE: the transport does not authenticate anyone. The user id is
whatever the client presents in its subscribe frame, and any origin may
connect. Put an authenticating gateway in front of this service before
exposing it beyond a trusted network.
"""

import logging
import queue
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from live_notifications.registry import SessionRegistry
from shared.clock import Clock, UTCClock, format_local_datetime
from shared.config import TransportSettings
from shared.models import LivePayload, SubscribeAck, Welcome

logger = logging.getLogger("transport")


# =============================================================================
# Frames & Destinations
# =============================================================================

class Destinations:
    """Destination names used on the live channel."""
    APP_CONNECT = "/app/connect"
    APP_SUBSCRIBE = "/app/subscribe"
    APP_TRACK_ORDER = "/app/track-order"

    NOTIFICATIONS = "notifications"
    DELIVERY_TRACKING = "delivery-tracking"

    ANNOUNCEMENTS = "/topic/announcements"
    STATUS = "/topic/status"

    @staticmethod
    def user_queue(user_id: Union[str, int], queue_name: str) -> str:
        return f"/user/{user_id}/queue/{queue_name}"


class FrameCommand(str, Enum):
    CONNECTED = "CONNECTED"
    MESSAGE = "MESSAGE"
    CLOSE = "CLOSE"


class ServerFrame(BaseModel):
    """Frame sent from the server to one session."""
    command: FrameCommand = FrameCommand.MESSAGE
    destination: Optional[str] = None
    body: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class ClientFrame(BaseModel):
    """Control frame sent by a client."""
    destination: str
    body: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")


class SessionKind(str, Enum):
    WEBSOCKET = "websocket"
    FALLBACK = "fallback"


class SessionLimitExceeded(RuntimeError):
    """Raised when a session is opened beyond ``max_sessions`` or during shutdown."""


class UnknownSessionError(KeyError):
    """Raised when a session id is not (or no longer) open."""


# =============================================================================
# Session
# =============================================================================

class Session:
    """
    One live client connection.

    The send queue is the only channel into the session: producers call
    offer(), the owning sending flow calls drain() or take().
    """

    def __init__(
        self,
        session_id: str,
        kind: SessionKind = SessionKind.WEBSOCKET,
        queue_size: int = 128,
        waker: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            session_id: Opaque id issued by the transport
            kind: websocket or long-poll fallback
            queue_size: Capacity of the send queue
            waker: Called (from any thread) after a frame is queued or the
                session closes, so an async sender can wake up
        """
        self.session_id = session_id
        self.kind = kind
        self.user_id: Optional[str] = None
        self.tracked_orders: set[str] = set()
        self.healthy = True
        self.consecutive_drops = 0
        self.dropped_frames = 0
        self.close_reason: Optional[str] = None
        self.last_seen = time.monotonic()
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._waker = waker
        self._closed = threading.Event()
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _wake(self) -> None:
        if self._waker is not None:
            try:
                self._waker()
            except RuntimeError:
                # event loop already gone
                pass

    def offer(self, frame: ServerFrame, timeout: float = 0.0) -> bool:
        """
        Queue a frame, waiting at most ``timeout`` seconds for room.

        Returns:
            True if queued, False if dropped (queue full or session closed)
        """
        if self.closed:
            return False
        try:
            if timeout > 0:
                self._queue.put(frame, timeout=timeout)
            else:
                self._queue.put_nowait(frame)
        except queue.Full:
            with self._lock:
                self.consecutive_drops += 1
                self.dropped_frames += 1
                self.healthy = False
            return False

        with self._lock:
            self.consecutive_drops = 0
            self.healthy = True
        self._wake()
        return True

    def drain(self) -> list[ServerFrame]:
        """Take every queued frame without blocking."""
        frames = []
        while True:
            try:
                frames.append(self._queue.get_nowait())
            except queue.Empty:
                return frames

    def take(self, timeout: float) -> list[ServerFrame]:
        """
        Wait up to ``timeout`` seconds for at least one frame, then drain.

        Returns early with whatever is queued when the session closes.
        """
        deadline = time.monotonic() + timeout
        while True:
            frames = self.drain()
            if frames or self.closed:
                return frames
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return []
            try:
                frames.append(self._queue.get(timeout=min(remaining, 0.1)))
            except queue.Empty:
                continue
            return frames + self.drain()

    def pending(self) -> int:
        return self._queue.qsize()

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def close(self, reason: str) -> None:
        if self.closed:
            return
        self.close_reason = reason
        self._closed.set()
        self._wake()

    def close_frame(self) -> ServerFrame:
        return ServerFrame(command=FrameCommand.CLOSE, body={"reason": self.close_reason or "closed"})

    def __repr__(self) -> str:
        return f"Session({self.session_id[:8]}, kind={self.kind.value}, user={self.user_id})"


# =============================================================================
# Transport
# =============================================================================

class LiveChannelTransport:
    """
    Owns the open sessions and delivers server payloads to them.

    Example:
        transport = LiveChannelTransport(registry)
        session = transport.open_session()
        transport.handle_frame(session.session_id,
                               ClientFrame(destination="/app/subscribe", body={"userId": "7"}))
        transport.send_to_user("7", Destinations.NOTIFICATIONS, payload)
    """

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        clock: Optional[Clock] = None,
        max_sessions: int = 10_000,
        send_queue_size: int = 128,
        send_timeout: float = 0.05,
        drop_threshold: int = 3,
        fallback_idle_timeout: float = 60.0,
    ):
        self.registry = registry or SessionRegistry()
        self.clock = clock or UTCClock()
        self.max_sessions = max_sessions
        self.send_queue_size = send_queue_size
        self.send_timeout = send_timeout
        self.drop_threshold = drop_threshold
        self.fallback_idle_timeout = fallback_idle_timeout
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._accepting = True

    @classmethod
    def from_settings(
        cls,
        settings: TransportSettings,
        registry: Optional[SessionRegistry] = None,
        clock: Optional[Clock] = None,
    ) -> "LiveChannelTransport":
        return cls(
            registry=registry,
            clock=clock,
            max_sessions=settings.max_sessions,
            send_queue_size=settings.send_queue,
            send_timeout=settings.send_timeout_ms / 1000,
            drop_threshold=settings.drop_threshold,
        )

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def open_session(
        self,
        kind: SessionKind = SessionKind.WEBSOCKET,
        waker: Optional[Callable[[], None]] = None,
    ) -> Session:
        """
        Accept a new session and queue its CONNECTED frame.

        Raises:
            SessionLimitExceeded: At capacity or shutting down
        """
        with self._lock:
            if not self._accepting:
                raise SessionLimitExceeded("transport is shutting down")
            if len(self._sessions) >= self.max_sessions:
                raise SessionLimitExceeded(f"session limit reached ({self.max_sessions})")
            session = Session(uuid4().hex, kind=kind, queue_size=self.send_queue_size, waker=waker)
            self._sessions[session.session_id] = session

        session.offer(ServerFrame(
            command=FrameCommand.CONNECTED,
            body={"sessionId": session.session_id},
        ))
        logger.info(f"Session opened: {session.session_id} ({kind.value})")
        return session

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    def close_session(self, session_id: str, reason: str = "client disconnected") -> bool:
        """
        Close a session and remove it from the registry.

        Returns:
            True if the session was open
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return False
            user_id = self.registry.detach(session_id)

        session.close(reason)
        logger.info(f"Session closed: {session_id} (user={user_id}, reason={reason})")
        return True

    def expire_idle_sessions(self, now: Optional[float] = None) -> int:
        """Close fallback sessions that have not polled within the idle timeout."""
        now = time.monotonic() if now is None else now
        with self._lock:
            idle = [
                s.session_id for s in self._sessions.values()
                if s.kind == SessionKind.FALLBACK and now - s.last_seen > self.fallback_idle_timeout
            ]
        for session_id in idle:
            self.close_session(session_id, reason="idle timeout")
        return len(idle)

    def shutdown(self, reason: str = "server shutting down") -> int:
        """Stop accepting sessions and close every open one."""
        with self._lock:
            self._accepting = False
            session_ids = list(self._sessions)
        for session_id in session_ids:
            self.close_session(session_id, reason=reason)
        logger.info(f"Transport shut down, closed {len(session_ids)} sessions")
        return len(session_ids)

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    # =========================================================================
    # Client frames
    # =========================================================================

    def handle_frame(self, session_id: str, frame: Union[ClientFrame, dict[str, Any]]) -> None:
        """
        Handle one control frame from a client.

        Unknown destinations and frames without a usable user id are logged
        and ignored; nothing is reported back to the client.

        Raises:
            UnknownSessionError: If the session is not open
        """
        if not isinstance(frame, ClientFrame):
            frame = ClientFrame.model_validate(frame)
        session = self.get_session(session_id)
        session.touch()

        if frame.destination == Destinations.APP_SUBSCRIBE:
            self._on_subscribe(session, frame.body)
        elif frame.destination == Destinations.APP_CONNECT:
            self._on_connect(session, frame.body)
        elif frame.destination == Destinations.APP_TRACK_ORDER:
            self._on_track_order(session, frame.body)
        else:
            logger.warning(f"Ignoring frame for unknown destination {frame.destination!r} from {session_id}")

    @staticmethod
    def _user_id(body: dict[str, Any]) -> Optional[str]:
        value = body.get("userId")
        if value is None or isinstance(value, (dict, list, bool)):
            return None
        value = str(value).strip()
        return value or None

    def _on_subscribe(self, session: Session, body: dict[str, Any]) -> None:
        user_id = self._user_id(body)
        if user_id is None:
            logger.warning(f"Subscribe without userId from session {session.session_id}")
            return

        with self._lock:
            if session.session_id not in self._sessions:
                return
            current = self.registry.user_for(session.session_id)
            if current is not None and current != user_id:
                self.registry.detach(session.session_id)
            self.registry.attach(user_id, session.session_id)
            session.user_id = user_id

        logger.info(f"User {user_id} subscribed to live notifications with session {session.session_id}")
        ack = SubscribeAck(user_id=user_id)
        self._deliver(session, ServerFrame(destination=Destinations.STATUS, body=ack.to_record()))

    def _on_connect(self, session: Session, body: dict[str, Any]) -> None:
        user_id = self._user_id(body)
        logger.info(f"User {user_id} connected via live channel with session {session.session_id}")
        welcome = Welcome(user_id=user_id, timestamp=format_local_datetime(self.clock.now()))
        destination = (
            Destinations.user_queue(user_id, Destinations.NOTIFICATIONS)
            if user_id else Destinations.STATUS
        )
        self._deliver(session, ServerFrame(destination=destination, body=welcome.to_record()))

    def _on_track_order(self, session: Session, body: dict[str, Any]) -> None:
        order_id = body.get("orderId")
        if order_id is None:
            logger.warning(f"Track-order without orderId from session {session.session_id}")
            return
        session.tracked_orders.add(str(order_id))
        logger.info(
            f"User {self._user_id(body)} started tracking order {order_id} "
            f"with session {session.session_id}"
        )

    # =========================================================================
    # Server delivery
    # =========================================================================

    def _deliver(self, session: Session, frame: ServerFrame) -> bool:
        if session.offer(frame, timeout=self.send_timeout):
            return True
        if session.closed:
            return False

        logger.warning(
            f"Dropped frame for session {session.session_id} "
            f"({session.consecutive_drops} consecutive, queue full)"
        )
        if session.consecutive_drops >= self.drop_threshold:
            self.close_session(session.session_id, reason="send queue overflow")
        return False

    def send_to_user(self, user_id: Union[str, int], queue_name: str, payload: LivePayload) -> int:
        """
        Fan a payload out to every live session of a user.

        Args:
            user_id: Target user
            queue_name: ``Destinations.NOTIFICATIONS`` or ``Destinations.DELIVERY_TRACKING``
            payload: The record to send

        Returns:
            Number of sessions that accepted the frame
        """
        session_ids = self.registry.sessions_for(user_id)
        if not session_ids:
            logger.debug(f"No live sessions for user {user_id}")
            return 0

        frame = ServerFrame(
            destination=Destinations.user_queue(user_id, queue_name),
            body=payload.to_record(),
        )
        delivered = 0
        for session_id in session_ids:
            with self._lock:
                session = self._sessions.get(session_id)
            if session is None:
                continue
            if self._deliver(session, frame):
                delivered += 1
        return delivered

    def broadcast(self, payload: LivePayload) -> int:
        """Deliver a payload to every open session on /topic/announcements."""
        frame = ServerFrame(destination=Destinations.ANNOUNCEMENTS, body=payload.to_record())
        delivered = 0
        for session in self.sessions():
            if self._deliver(session, frame):
                delivered += 1
        logger.info(f"Broadcast delivered to {delivered} sessions")
        return delivered
