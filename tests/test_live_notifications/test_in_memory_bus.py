"""
Tests for the in-memory partitioned bus.

These tests verify the consumer-group contract the Event Consumer relies
on: keyed partitioning, per-partition order and committed offsets.
"""

import threading
import time

import pytest

from live_notifications.event_bus import InMemoryBus
from live_notifications.events import order_event

TOPIC = "order-events"


def publish_for_user(bus: InMemoryBus, user_id: int, count: int) -> None:
    for order_id in range(count):
        bus.publish_event(order_event("ORDER_CREATED", order_id, user_id), topic=TOPIC)


class TestPublish:

    def test_same_key_same_partition(self, bus: InMemoryBus):
        first = bus.publish(TOPIC, b"a", key=b"7")
        second = bus.publish(TOPIC, b"b", key=b"7")

        assert first.partition == second.partition
        assert second.offset == first.offset + 1

    def test_publish_event_keys_by_user(self, bus: InMemoryBus):
        record = bus.publish_event(order_event("ORDER_CREATED", 42, 7), topic=TOPIC)

        assert record.key == b"7"
        assert record.partition == bus.partition_for(b"7")

    def test_end_offsets(self, bus: InMemoryBus):
        publish_for_user(bus, 7, 4)

        ends = bus.end_offsets(TOPIC)
        assert sum(ends.values()) == 4
        assert ends[bus.partition_for(b"7")] == 4

    def test_invalid_partition_count(self):
        with pytest.raises(ValueError):
            InMemoryBus(partitions=0)


class TestConsumerGroup:
    """Tests for poll/commit semantics."""

    def test_poll_returns_records_in_partition_order(self, bus: InMemoryBus):
        publish_for_user(bus, 7, 5)
        client = bus.consumer(TOPIC)

        records = client.poll(timeout=0.0, max_records=100)

        assert [r.offset for r in records] == [0, 1, 2, 3, 4]

    def test_poll_respects_max_records(self, bus: InMemoryBus):
        publish_for_user(bus, 7, 5)
        client = bus.consumer(TOPIC)

        assert len(client.poll(timeout=0.0, max_records=2)) == 2
        assert len(client.poll(timeout=0.0, max_records=10)) == 3

    def test_uncommitted_records_are_redelivered_to_new_member(self, bus: InMemoryBus):
        publish_for_user(bus, 7, 3)
        bus.consumer(TOPIC).poll(timeout=0.0, max_records=10)

        assert len(bus.consumer(TOPIC).poll(timeout=0.0, max_records=10)) == 3

    def test_commit_advances_group_offset(self, bus: InMemoryBus):
        publish_for_user(bus, 7, 3)
        client = bus.consumer(TOPIC)
        client.poll(timeout=0.0, max_records=10)
        client.commit()

        assert bus.lag("notification-service", TOPIC) == 0
        assert bus.consumer(TOPIC).poll(timeout=0.0, max_records=10) == []

    def test_groups_are_independent(self, bus: InMemoryBus):
        publish_for_user(bus, 7, 2)
        client = bus.consumer(TOPIC, group_id="a")
        client.poll(timeout=0.0, max_records=10)
        client.commit()

        assert bus.lag("a", TOPIC) == 0
        assert bus.lag("b", TOPIC) == 2

    def test_poll_waits_for_publish(self, bus: InMemoryBus):
        client = bus.consumer(TOPIC)
        timer = threading.Timer(0.05, lambda: bus.publish(TOPIC, b"late", key=b"7"))
        timer.start()

        started = time.monotonic()
        records = client.poll(timeout=2.0, max_records=10)

        assert [r.value for r in records] == [b"late"]
        assert time.monotonic() - started < 1.5
        timer.join()

    def test_poll_after_close_fails(self, bus: InMemoryBus):
        client = bus.consumer(TOPIC)
        client.close()

        with pytest.raises(RuntimeError):
            client.poll(timeout=0.0, max_records=1)


def test_buses_share_no_state():
    first = InMemoryBus(partitions=3)
    second = InMemoryBus(partitions=3)
    publish_for_user(first, 7, 2)

    assert sum(second.end_offsets(TOPIC).values()) == 0
    assert second.consumer(TOPIC).poll(timeout=0.0, max_records=10) == []


def test_package_exports_resolve():
    import live_notifications
    import shared

    for package in (live_notifications, shared):
        for name in package.__all__:
            assert hasattr(package, name), f"{package.__name__}.{name}"
