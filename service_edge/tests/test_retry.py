"""
Unit tests for the retry decorator.
"""

import pytest

from shared.config import get_config
from shared.retry import RetryConfig, RetryError, retry_on_exception

NO_WAIT = RetryConfig(max_attempts=3, base_delay=0, jitter=False)


class TestRetry:
    """Test cases for retry_on_exception."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        calls = []

        @retry_on_exception((ConnectionError,), NO_WAIT)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("transient")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_raises_retry_error_when_exhausted(self):
        @retry_on_exception((ConnectionError,), NO_WAIT)
        async def always_down():
            raise ConnectionError("down")

        with pytest.raises(RetryError) as exc_info:
            await always_down()
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_exception, ConnectionError)

    @pytest.mark.asyncio
    async def test_other_exceptions_are_not_retried(self):
        calls = []

        @retry_on_exception((ConnectionError,), NO_WAIT)
        async def broken():
            calls.append(1)
            raise ValueError("bug")

        with pytest.raises(ValueError):
            await broken()
        assert len(calls) == 1

    @pytest.mark.parametrize("strategy,expected", [
        ("exponential", [1.0, 2.0, 4.0, 5.0]),
        ("linear", [1.0, 2.0, 3.0, 4.0]),
        ("fixed", [1.0, 1.0, 1.0, 1.0]),
    ])
    def test_backoff_strategies(self, strategy, expected):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False, backoff_strategy=strategy)
        assert [config.delay_for(attempt) for attempt in range(1, 5)] == expected

    def test_jitter_stays_within_ten_percent(self):
        config = RetryConfig(base_delay=1.0, backoff_strategy="fixed")
        assert all(0.9 <= config.delay_for(1) <= 1.1 for _ in range(20))

    def test_unknown_strategy_is_rejected(self):
        with pytest.raises(ValueError):
            RetryConfig(backoff_strategy="fibonacci")

    def test_from_settings(self):
        settings = get_config("edge", 8000, propagation_retry_attempts=5, propagation_retry_max_delay=1.5)
        config = RetryConfig.from_settings(settings)
        assert (config.max_attempts, config.base_delay, config.max_delay) == (5, 0.2, 1.5)
