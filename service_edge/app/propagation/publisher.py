"""
Transports that carry change events from the store to the propagator.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

from shared.errors import ControlPlaneException
from shared.logging import get_logger

from .events import ChangeEvent


class ChangePublisher(ABC):
    """Delivers change events at least once."""

    async def start(self) -> None:
        """Open the transport."""

    async def stop(self) -> None:
        """Flush and close the transport."""

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        ...


class QueueChangePublisher(ChangePublisher):
    """In-process transport; the propagator drains the queue as a task."""

    def __init__(self, maxsize: int = 0):
        self.queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue(maxsize=maxsize)

    async def publish(self, event: ChangeEvent) -> None:
        await self.queue.put(event)


class KafkaChangePublisher(ChangePublisher):
    """Publishes change events to a Kafka topic keyed by project id."""

    def __init__(self, bootstrap_servers: str, topic: str):
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.logger = get_logger("edge.propagation.kafka_producer")
        self.producer: Optional[KafkaProducer] = None

    async def start(self):
        try:
            self.producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                key_serializer=lambda x: x.encode('utf-8') if x else None,
                acks='all',
                retries=3,
                linger_ms=10
            )
            self.logger.info("Kafka change publisher started", topic=self.topic)

        except Exception as e:
            self.logger.error("Failed to start Kafka producer", error=str(e))
            raise ControlPlaneException("KAFKA_PRODUCER_START_FAILED", str(e))

    async def stop(self):
        if self.producer:
            self.producer.flush()
            self.producer.close()
            self.logger.info("Kafka change publisher stopped")

    async def publish(self, event: ChangeEvent) -> None:
        if not self.producer:
            raise ControlPlaneException("KAFKA_PRODUCER_NOT_STARTED", "Producer not started")

        # Same project -> same partition, so per-project order is kept.
        # Values are ChangeEvent.encode() bytes, read back with ChangeEvent.decode.
        future = self.producer.send(
            topic=self.topic,
            value=event.encode(),
            key=event.project_id
        )
        try:
            record_metadata = await asyncio.get_running_loop().run_in_executor(
                None, lambda: future.get(timeout=10)
            )
        except KafkaError as e:
            self.logger.error("Kafka error publishing change", topic=self.topic, error=str(e))
            raise ControlPlaneException("KAFKA_PUBLISH_FAILED", str(e))

        self.logger.debug(
            "Change event published",
            topic=self.topic,
            partition=record_metadata.partition,
            offset=record_metadata.offset
        )
