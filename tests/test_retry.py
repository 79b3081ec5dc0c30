"""Tests for store-write retry with backoff."""

import pytest

from pomocop.pomo import RetryConfig, StoreUnavailableError, with_retry
from pomocop.pomo.retry import is_retryable_error


class Flaky:
    def __init__(self, failures: int, error: Exception | None = None):
        self.failures = failures
        self.error = error or StoreUnavailableError("put", "chan-1")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


NO_DELAY = RetryConfig(max_retries=3, base_delay_ms=0, max_delay_ms=0)


class TestRetryConfig:
    def test_delay_doubles_until_cap(self):
        config = RetryConfig(base_delay_ms=500, max_delay_ms=3000)
        assert [config.delay_for(n) for n in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_defaults(self):
        config = RetryConfig()
        assert config.max_retries == 5
        assert config.delay_for(0) == 0.5
        assert config.delay_for(10) == 30.0


class TestWithRetry:
    """Tests for the with_retry helper."""

    async def test_succeeds_first_try(self):
        func = Flaky(0)
        assert await with_retry(func, NO_DELAY) == "ok"
        assert func.calls == 1

    async def test_recovers_after_store_errors(self):
        func = Flaky(3)
        assert await with_retry(func, NO_DELAY) == "ok"
        assert func.calls == 4

    async def test_gives_up_after_max_retries(self, caplog):
        func = Flaky(10)
        with pytest.raises(StoreUnavailableError):
            await with_retry(func, NO_DELAY, "timer_advance")
        assert func.calls == 4
        assert "retry_exhausted" in [r.getMessage() for r in caplog.records]

    async def test_other_errors_not_retried(self):
        func = Flaky(1, ValueError("bug"))
        with pytest.raises(ValueError):
            await with_retry(func, NO_DELAY)
        assert func.calls == 1

    async def test_disabled(self):
        func = Flaky(1)
        with pytest.raises(StoreUnavailableError):
            await with_retry(func, RetryConfig(enabled=False))
        assert func.calls == 1


def test_only_store_errors_are_retryable():
    assert is_retryable_error(StoreUnavailableError("put"))
    assert not is_retryable_error(RuntimeError("boom"))
