"""
Kafka consumer feeding change events to the propagator.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import kafka
from kafka.errors import KafkaError

from shared.errors import ControlPlaneException
from shared.logging import get_logger

from .events import ChangeEvent
from .propagator import describe

EventHandler = Callable[[ChangeEvent], Awaitable[bool]]


class KafkaChangeConsumer:
    """Polls the change topic and hands each decoded event to ``handler``."""

    def __init__(self, bootstrap_servers: str, group_id: str, topic: str, handler: EventHandler):
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.topic = topic
        self.handler = handler
        self.logger = get_logger("edge.propagation.kafka_consumer")
        self.consumer: Optional[kafka.KafkaConsumer] = None
        self.running = False
        self._consumer_task: Optional[asyncio.Task] = None

    async def start(self, start_loop: bool = True):
        """Start the Kafka consumer."""
        try:
            self.consumer = kafka.KafkaConsumer(
                bootstrap_servers=self.bootstrap_servers,
                group_id=self.group_id,
                value_deserializer=lambda x: x,
                key_deserializer=lambda x: x,
                auto_offset_reset='earliest',
                enable_auto_commit=False,
                max_poll_records=100,
                session_timeout_ms=30000,
                heartbeat_interval_ms=10000
            )
            self.consumer.subscribe([self.topic])

            self.running = True
            if start_loop:
                self._consumer_task = asyncio.create_task(self._consume_loop())
            self.logger.info("Kafka change consumer started", group_id=self.group_id, topic=self.topic)

        except KafkaError as e:
            self.logger.error("Failed to start Kafka consumer", error=str(e))
            raise ControlPlaneException("KAFKA_CONSUMER_START_FAILED", str(e))

    async def stop(self):
        """Stop the Kafka consumer."""
        self.running = False
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass

        if self.consumer:
            self.consumer.close()
            self.logger.info("Kafka change consumer stopped")

    async def poll_once(self, timeout_ms: int = 1000) -> int:
        """Process one poll batch and commit its offsets; returns events handled."""
        loop = asyncio.get_running_loop()
        message_batch = await loop.run_in_executor(
            None, lambda: self.consumer.poll(timeout_ms=timeout_ms)
        )
        if not message_batch:
            return 0

        handled = 0
        for messages in message_batch.values():
            for message in messages:
                try:
                    event = ChangeEvent.decode(message.value)
                except (ValueError, KeyError) as e:
                    self.logger.error("Discarding malformed change event",
                                      offset=message.offset, error=str(e))
                    continue

                self.logger.debug("Change event received", offset=message.offset, **describe(event))
                await self.handler(event)
                handled += 1

        # Commit after handling so a crash replays rather than loses events
        await loop.run_in_executor(None, self.consumer.commit)
        return handled

    async def _consume_loop(self):
        """Main consumption loop."""
        while self.running:
            try:
                await self.poll_once()

            except KafkaError as e:
                self.logger.error("Kafka error in consume loop", error=str(e))
                await asyncio.sleep(5)

            except asyncio.CancelledError:
                break

            except Exception as e:
                self.logger.error("Unexpected error in consume loop", error=str(e))
                await asyncio.sleep(1)
