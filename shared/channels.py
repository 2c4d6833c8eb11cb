"""
Outbound notification channels (email/SMS simulation).

The dispatcher hands every headline notification to an OutboundChannel as
a side effect next to the live push. Real integrations (SendGrid, Twilio,
Firebase) are out of scope, so the shipped channel only logs.

Design decisions:
- OutboundChannel is a Protocol: ``send(user_id, subject, body)``
- LoggingOutboundChannel logs every send and keeps a history for tests
- Failures and slow gateways can be simulated for testing
- BoundedOutboundChannel enforces a time budget per send; a send that
  overruns is abandoned and reported as a timeout
"""

import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

logger = logging.getLogger("notifications")


@dataclass
class OutboundResult:
    """
    Result of an outbound send attempt.

    Captures success/failure and metadata for debugging and testing.
    """
    success: bool
    user_id: str
    subject: str
    body: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None
    timed_out: bool = False

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        return f"{status} OUTBOUND to user {self.user_id}: {self.subject}"


class OutboundChannel(Protocol):
    """Side channel for email/SMS/push style delivery."""

    def send(self, user_id: str, subject: str, body: str) -> OutboundResult:  # pragma: no cover - Protocol
        ...


class LoggingOutboundChannel:
    """
    Mock email/SMS gateway.

    Logs sends and tracks them for test assertions. Can simulate failures
    and slow gateways.
    """

    def __init__(self, fail_rate: float = 0.0, delay: float = 0.0):
        """
        Initialize the channel.

        Args:
            fail_rate: Probability of send failure (0.0 to 1.0), for testing.
            delay: Seconds each send takes, to simulate a slow gateway.
        """
        self.fail_rate = fail_rate
        self.delay = delay
        self.sent_messages: list[OutboundResult] = []
        self._lock = threading.Lock()

    def send(self, user_id: str, subject: str, body: str) -> OutboundResult:
        if self.delay:
            time.sleep(self.delay)

        if random.random() < self.fail_rate:
            result = OutboundResult(
                success=False,
                user_id=user_id,
                subject=subject,
                body=body,
                error="Simulated outbound delivery failure",
            )
            logger.error(f"[OUTBOUND FAILED] User: {user_id} | Subject: {subject} | Error: {result.error}")
        else:
            result = OutboundResult(success=True, user_id=user_id, subject=subject, body=body)
            logger.info(f"[OUTBOUND] User: {user_id} | Subject: {subject}")
            logger.debug(f"[OUTBOUND BODY] {body}")

        with self._lock:
            self.sent_messages.append(result)
        return result

    def get_sent_count(self) -> int:
        """Get the number of messages sent (for testing)."""
        return len(self.sent_messages)

    def get_successful_sends(self) -> list[OutboundResult]:
        return [m for m in self.sent_messages if m.success]

    def clear_history(self):
        """Clear sent message history (useful between tests)."""
        with self._lock:
            self.sent_messages.clear()

    def find_message_to(self, user_id: str) -> Optional[OutboundResult]:
        """Find the first message sent to a specific user."""
        for msg in self.sent_messages:
            if msg.user_id == user_id:
                return msg
        return None


class BoundedOutboundChannel:
    """
    Wraps an OutboundChannel with a per-send time budget.

    Sends run on a small worker pool. If the wrapped channel does not
    answer within ``timeout`` seconds the caller gets a timed-out result
    and moves on; the worker finishes in the background. Exceptions from
    the wrapped channel become failed results.

    At most ``max_workers`` sends are in flight. While every worker is
    stuck on an abandoned send, new sends are refused at once instead of
    queueing behind them.
    """

    def __init__(self, channel: OutboundChannel, timeout: float = 0.25, max_workers: int = 4):
        self.channel = channel
        self.timeout = timeout
        self._slots = threading.BoundedSemaphore(max_workers)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="outbound")

    def send(self, user_id: str, subject: str, body: str) -> OutboundResult:
        if not self._slots.acquire(blocking=False):
            logger.warning(f"[OUTBOUND BUSY] User: {user_id} | Subject: {subject} | all workers in use")
            return OutboundResult(
                success=False,
                user_id=user_id,
                subject=subject,
                body=body,
                error="busy",
            )

        try:
            future = self._executor.submit(self.channel.send, user_id, subject, body)
        except RuntimeError as e:
            # executor already shut down
            self._slots.release()
            return OutboundResult(success=False, user_id=user_id, subject=subject, body=body, error=str(e))
        future.add_done_callback(lambda _: self._slots.release())

        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            logger.warning(
                f"[OUTBOUND TIMEOUT] User: {user_id} | Subject: {subject} | "
                f"abandoned after {self.timeout * 1000:.0f} ms"
            )
            return OutboundResult(
                success=False,
                user_id=user_id,
                subject=subject,
                body=body,
                error="timeout",
                timed_out=True,
            )
        except Exception as e:
            logger.error(f"[OUTBOUND FAILED] User: {user_id} | Subject: {subject} | Error: {e}")
            return OutboundResult(success=False, user_id=user_id, subject=subject, body=body, error=str(e))

    def shutdown(self) -> None:
        """Stop accepting sends; pending ones are not waited for."""
        self._executor.shutdown(wait=False, cancel_futures=True)
