"""
Retry with backoff for transient backend failures.

The propagator wraps cache writes in ``retry_on_exception`` so a Redis blip
does not drop a change event. Anything still failing after the last attempt
surfaces as ``RetryError`` carrying the final cause.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.config import BaseConfig
from shared.logging import get_logger

BACKOFF_STRATEGIES = ("exponential", "linear", "fixed")


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    backoff_strategy: str = "exponential"

    def __post_init__(self):
        if self.backoff_strategy not in BACKOFF_STRATEGIES:
            raise ValueError(f"Unknown backoff strategy: {self.backoff_strategy}")

    @classmethod
    def from_settings(cls, settings: BaseConfig) -> "RetryConfig":
        """Retry policy for change propagation."""
        return cls(
            max_attempts=settings.propagation_retry_attempts,
            base_delay=settings.propagation_retry_base_delay,
            max_delay=settings.propagation_retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        if self.backoff_strategy == "exponential":
            delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        elif self.backoff_strategy == "linear":
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)
        if self.jitter:
            delay += random.uniform(-0.1 * delay, 0.1 * delay)
        return max(0.0, delay)


class RetryError(Exception):
    """All attempts failed."""

    def __init__(self, message: str, last_exception: BaseException, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                       config: Optional[RetryConfig] = None) -> Callable:
    """Retry an async callable while it raises one of ``exceptions``.

    Other exceptions propagate immediately.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        name = getattr(func, "__qualname__", repr(func))
        logger = get_logger(f"retry.{name}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            if config.max_attempts < 1:
                raise ValueError("max_attempts must be at least 1")

            attempt = 1
            while True:
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= config.max_attempts:
                        logger.error("Giving up", function=name, attempts=attempt, error=str(e))
                        raise RetryError(
                            f"{name} failed after {attempt} attempts", last_exception=e, attempts=attempt
                        ) from e

                    delay = config.delay_for(attempt)
                    logger.warning("Attempt failed, retrying", function=name, attempt=attempt,
                                   delay=round(delay, 3), error=str(e))
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 1:
                    logger.info("Succeeded after retry", function=name, attempt=attempt)
                return result

        return wrapper

    return decorator
