"""
Standalone propagator process for Kafka deployments.

Run with ``python -m service_edge.app.propagation.worker``.
"""

import asyncio
import signal

from shared.config import get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import get_metrics_collector
from shared.retry import RetryConfig

from ..caching.edge_cache import RedisEdgeCache
from ..caching.read_through import cache_ttls
from .consumer import KafkaChangeConsumer
from .propagator import ChangePropagator


async def run_worker() -> None:
    config = get_config("edge-propagator", 8001)
    configure_logging(config.service_name, config.log_level)
    logger = get_logger("edge.propagation.worker")

    cache = RedisEdgeCache(config.redis_url, config.cache_timeout_seconds)
    await cache.start()
    propagator = ChangePropagator(
        cache,
        ttls=cache_ttls(config),
        metrics=get_metrics_collector(config.service_name),
        retry_config=RetryConfig.from_settings(config),
    )
    consumer = KafkaChangeConsumer(
        config.kafka_bootstrap,
        config.change_consumer_group,
        config.change_topic,
        propagator.handle,
    )
    await consumer.start(start_loop=True)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Propagator worker started", topic=config.change_topic)
    await stop.wait()

    await consumer.stop()
    await cache.stop()
    logger.info("Propagator worker stopped")


def main():
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
