"""
Event consumer for the ``order-events`` topic.

Pulls records from the bus with consumer-group semantics, decodes them and
hands each event to the dispatcher synchronously, in per-partition order.

Design decisions:
- At-most-once towards clients: offsets advance past poison messages and
  past events whose dispatch raised
- Bounded memory: at most ``max_buffered_per_partition`` records are
  buffered per partition, and no poll happens while a buffer is full
- One flow (a daemon thread) polls, dispatches and commits; stop() drains
  what is buffered and commits before closing the client
"""

import logging
import threading
from collections import deque
from typing import Optional

from live_notifications.dispatcher import NotificationDispatcher
from live_notifications.event_bus import BusClient, BusRecord
from live_notifications.events import EventDecodeError, decode_order_event

logger = logging.getLogger("event_consumer")


class OrderEventConsumer:
    """
    Consumer flow feeding the NotificationDispatcher.

    Example:
        consumer = OrderEventConsumer(bus.consumer("order-events"), dispatcher)
        consumer.start()
        ...
        consumer.stop()
    """

    def __init__(
        self,
        client: BusClient,
        dispatcher: NotificationDispatcher,
        max_buffered_per_partition: int = 256,
        poll_timeout: float = 1.0,
    ):
        if max_buffered_per_partition < 1:
            raise ValueError("max_buffered_per_partition must be >= 1")
        self.client = client
        self.dispatcher = dispatcher
        self.max_buffered_per_partition = max_buffered_per_partition
        self.poll_timeout = poll_timeout

        self._buffers: dict[int, deque[BusRecord]] = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

        self.received = 0
        self.dispatched = 0
        self.decode_errors = 0
        self.dispatch_errors = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the consumer flow in a background thread."""
        if self._thread is not None:
            logger.warning("OrderEventConsumer already started")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="order-event-consumer", daemon=True)
        self._thread.start()
        logger.info("OrderEventConsumer started")

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """
        Stop polling, dispatch whatever is buffered, commit and close.

        Safe to call more than once.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.error("OrderEventConsumer thread did not stop in time")
                return
            self._thread = None
        if self._closed:
            return

        self._drain()
        self._commit()
        self.client.close()
        self._closed = True
        logger.info(f"OrderEventConsumer stopped ({self.dispatched} events dispatched)")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Consumer cycle failed")
                self._stop.wait(self.poll_timeout)

    # =========================================================================
    # Poll / dispatch cycle
    # =========================================================================

    def buffered(self, partition: Optional[int] = None) -> int:
        """Records waiting for dispatch (one partition, or all)."""
        if partition is not None:
            return len(self._buffers.get(partition, ()))
        return sum(len(buf) for buf in self._buffers.values())

    def _room(self) -> int:
        fullest = max((len(buf) for buf in self._buffers.values()), default=0)
        return self.max_buffered_per_partition - fullest

    def poll(self, timeout: Optional[float] = None) -> int:
        """
        Fetch records into the partition buffers.

        Polls for at most as many records as the fullest buffer has room
        for, so no partition can exceed its bound. Does not poll at all
        while a buffer is full.

        Returns:
            Number of records fetched
        """
        room = self._room()
        if room <= 0:
            logger.debug("Partition buffer full, polling paused")
            return 0

        records = self.client.poll(
            timeout=self.poll_timeout if timeout is None else timeout,
            max_records=room,
        )
        for record in records:
            self._buffers.setdefault(record.partition, deque()).append(record)
        self.received += len(records)
        return len(records)

    def run_once(self, timeout: Optional[float] = None) -> int:
        """
        One cycle: poll, dispatch everything buffered, commit.

        Returns:
            Number of records handled in this cycle
        """
        self.poll(timeout)
        handled = self._drain()
        if handled:
            self._commit()
        return handled

    def _drain(self) -> int:
        handled = 0
        for partition in sorted(self._buffers):
            buffer = self._buffers[partition]
            while buffer:
                self.handle_record(buffer.popleft())
                handled += 1
        return handled

    def handle_record(self, record: BusRecord) -> bool:
        """
        Decode and dispatch one record. Never raises.

        Returns:
            True if the event was dispatched without error
        """
        try:
            event = decode_order_event(record.value)
        except EventDecodeError as e:
            self.decode_errors += 1
            logger.warning(f"Skipping undecodable record {record}: {e} | raw={record.value!r}")
            return False

        try:
            self.dispatcher.dispatch(event)
        except Exception:
            self.dispatch_errors += 1
            logger.exception(f"Dispatch failed for {event} at {record}")
            return False

        self.dispatched += 1
        return True

    def _commit(self) -> None:
        try:
            self.client.commit()
        except Exception:
            logger.exception("Offset commit failed")

    def stats(self) -> dict[str, int]:
        return {
            "received": self.received,
            "dispatched": self.dispatched,
            "decode_errors": self.decode_errors,
            "dispatch_errors": self.dispatch_errors,
            "buffered": self.buffered(),
        }
