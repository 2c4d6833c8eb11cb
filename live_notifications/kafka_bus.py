"""
Kafka implementation of the BusClient contract.

Wraps a kafka-python KafkaConsumer subscribed to the order-events topic
with auto-commit disabled: the Event Consumer commits explicitly after the
polled batch has been dispatched.
"""

import logging
from typing import Optional

from kafka import KafkaConsumer

from live_notifications.event_bus import BusRecord

logger = logging.getLogger("event_bus")


class KafkaBusClient:
    """Consumer-group member reading one Kafka topic."""

    def __init__(
        self,
        brokers: list[str],
        topic: str = "order-events",
        group_id: str = "notification-service",
        consumer: Optional[KafkaConsumer] = None,
    ):
        """
        Args:
            brokers: Bootstrap servers, e.g. ``["kafka:9092"]``
            topic: Topic to subscribe to
            group_id: Consumer group id
            consumer: Pre-built consumer (tests inject a fake here)
        """
        self.topic = topic
        self.group_id = group_id
        self._consumer = consumer or KafkaConsumer(
            topic,
            bootstrap_servers=brokers,
            group_id=group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )
        logger.info(f"Kafka consumer created: topic={topic}, group={group_id}, brokers={brokers}")

    def poll(self, timeout: float, max_records: int) -> list[BusRecord]:
        if max_records <= 0:
            return []
        batches = self._consumer.poll(timeout_ms=int(timeout * 1000), max_records=max_records)

        records: list[BusRecord] = []
        for messages in batches.values():
            for message in messages:
                records.append(BusRecord(
                    topic=message.topic,
                    partition=message.partition,
                    offset=message.offset,
                    key=message.key,
                    value=message.value,
                ))
        return records

    def commit(self) -> None:
        """Commit the consumed positions of every assigned partition."""
        self._consumer.commit()

    def close(self) -> None:
        self._consumer.close(autocommit=False)
