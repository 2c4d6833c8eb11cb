"""
In-memory partitioned message bus.

This module provides a small stand-in for Kafka that the service uses in
development, demos and tests. Topics are split into partitions, records
are routed by key, and consumer groups track committed offsets, which is
exactly the contract the Event Consumer relies on.

Design decisions:
- Records with the same key always land on the same partition (crc32)
- Each partition is an append-only list; offsets are list indices
- Committed offsets are kept per (group, topic, partition)
- One client per group; there is no rebalancing
- poll() blocks on a condition variable up to the given timeout

In production the KafkaBusClient in kafka_bus.py implements the same
BusClient contract against a real cluster.
"""

import itertools
import logging
import threading
import zlib
from dataclasses import dataclass
from typing import Optional, Protocol

from live_notifications.events import encode_order_event, message_key
from shared.models import OrderEvent

logger = logging.getLogger("event_bus")

DEFAULT_TOPIC = "order-events"


@dataclass(frozen=True)
class BusRecord:
    """One record fetched from a topic partition."""
    topic: str
    partition: int
    offset: int
    key: Optional[bytes]
    value: bytes

    def __str__(self) -> str:
        return f"BusRecord({self.topic}[{self.partition}]@{self.offset})"


class BusClient(Protocol):
    """What the Event Consumer needs from a message bus."""

    def poll(self, timeout: float, max_records: int) -> list[BusRecord]:  # pragma: no cover - Protocol
        ...

    def commit(self) -> None:  # pragma: no cover - Protocol
        ...

    def close(self) -> None:  # pragma: no cover - Protocol
        ...


class InMemoryBus:
    """
    Partitioned topic log with consumer-group offsets.

    Example usage:
        bus = InMemoryBus(partitions=3)
        client = bus.consumer("order-events", group_id="notification-service")

        bus.publish_event(order_created(...))
        records = client.poll(timeout=0.0, max_records=100)
        client.commit()
    """

    def __init__(self, partitions: int = 3):
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.partitions = partitions
        self._topics: dict[str, list[list[BusRecord]]] = {}
        self._committed: dict[tuple[str, str, int], int] = {}
        self._round_robin = itertools.count()
        self._cond = threading.Condition()

    def _log_for(self, topic: str) -> list[list[BusRecord]]:
        if topic not in self._topics:
            self._topics[topic] = [[] for _ in range(self.partitions)]
        return self._topics[topic]

    def partition_for(self, key: Optional[bytes]) -> int:
        """Stable partition for a key; keyless records are spread round-robin."""
        if key is None:
            return next(self._round_robin) % self.partitions
        return zlib.crc32(key) % self.partitions

    def publish(self, topic: str, value: bytes, key: Optional[bytes] = None) -> BusRecord:
        """
        Append a record to the topic.

        Returns:
            The stored record, with its partition and offset
        """
        with self._cond:
            partition = self.partition_for(key)
            log = self._log_for(topic)[partition]
            record = BusRecord(topic=topic, partition=partition, offset=len(log), key=key, value=value)
            log.append(record)
            self._cond.notify_all()

        logger.debug(f"Published: {record}")
        return record

    def publish_event(self, event: OrderEvent, topic: str = DEFAULT_TOPIC) -> BusRecord:
        """Encode and publish an OrderEvent keyed by its user id."""
        return self.publish(topic, encode_order_event(event), key=message_key(event))

    def end_offsets(self, topic: str) -> dict[int, int]:
        """Next offset to be written, per partition."""
        with self._cond:
            return {p: len(log) for p, log in enumerate(self._log_for(topic))}

    def committed(self, group_id: str, topic: str, partition: int) -> int:
        with self._cond:
            return self._committed.get((group_id, topic, partition), 0)

    def lag(self, group_id: str, topic: str) -> int:
        """Records published but not yet committed by the group."""
        ends = self.end_offsets(topic)
        return sum(end - self.committed(group_id, topic, p) for p, end in ends.items())

    def consumer(self, topic: str = DEFAULT_TOPIC, group_id: str = "notification-service") -> "InMemoryBusClient":
        return InMemoryBusClient(self, topic, group_id)

    def _fetch(self, topic: str, positions: dict[int, int], max_records: int) -> list[BusRecord]:
        log = self._log_for(topic)
        batch: list[BusRecord] = []
        for partition in range(self.partitions):
            room = max_records - len(batch)
            if room <= 0:
                break
            start = positions[partition]
            batch.extend(log[partition][start:start + room])
        return batch

    def _commit(self, group_id: str, topic: str, positions: dict[int, int]) -> None:
        with self._cond:
            for partition, offset in positions.items():
                self._committed[(group_id, topic, partition)] = offset


class InMemoryBusClient:
    """Consumer-group member reading one topic of an InMemoryBus."""

    def __init__(self, bus: InMemoryBus, topic: str, group_id: str):
        self.bus = bus
        self.topic = topic
        self.group_id = group_id
        self.closed = False
        self._positions = {
            p: bus.committed(group_id, topic, p) for p in range(bus.partitions)
        }

    def poll(self, timeout: float, max_records: int) -> list[BusRecord]:
        """
        Fetch up to ``max_records`` records, waiting up to ``timeout`` seconds
        if none are available.
        """
        if self.closed:
            raise RuntimeError("client is closed")
        if max_records <= 0:
            return []

        with self.bus._cond:
            batch = self.bus._fetch(self.topic, self._positions, max_records)
            if not batch and timeout > 0:
                self.bus._cond.wait(timeout)
                batch = self.bus._fetch(self.topic, self._positions, max_records)

        for record in batch:
            self._positions[record.partition] = record.offset + 1
        return batch

    def commit(self) -> None:
        """Commit the position after the last polled record of every partition."""
        self.bus._commit(self.group_id, self.topic, dict(self._positions))

    def close(self) -> None:
        self.closed = True
