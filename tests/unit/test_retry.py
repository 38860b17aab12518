"""
Tests for retry with backoff.
"""

import asyncio

import pytest

from discubot.exceptions import NotionAPIError
from discubot.utils.retry import backoff_delay, is_retryable, retry_with_backoff


class Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def flaky(failures, result="ok"):
    """Coroutine factory that raises the given errors before succeeding."""
    errors = list(failures)
    calls = {"count": 0}

    async def operation():
        calls["count"] += 1
        if errors:
            raise errors.pop(0)
        return result

    return operation, calls


class TestBackoffDelay:
    """Tests for the delay schedule."""

    def test_exponential_schedule(self):
        assert [backoff_delay(n, 1.0) for n in (1, 2, 3, 4)] == [0.0, 1.0, 2.0, 4.0]

    def test_capped(self):
        assert backoff_delay(6, 1.0, max_delay=5.0) == 5.0


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        sleep = Recorder()
        operation, calls = flaky([RuntimeError("a"), RuntimeError("b")])
        result = await retry_with_backoff(operation, max_attempts=3, base_delay=1.0, sleep=sleep)
        assert result == "ok"
        assert calls["count"] == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self):
        operation, calls = flaky([RuntimeError("a"), RuntimeError("b"), RuntimeError("c")])
        with pytest.raises(RuntimeError, match="c"):
            await retry_with_backoff(operation, max_attempts=3, sleep=Recorder())
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self):
        operation, calls = flaky([NotionAPIError("bad request", status_code=400)])
        with pytest.raises(NotionAPIError):
            await retry_with_backoff(operation, max_attempts=3, should_retry=is_retryable, sleep=Recorder())
        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        attempts = {"count": 0}

        async def slow_then_fast():
            attempts["count"] += 1
            if attempts["count"] == 1:
                await asyncio.sleep(1)
            return "done"

        result = await retry_with_backoff(slow_then_fast, max_attempts=2, timeout=0.01, sleep=Recorder())
        assert result == "done"
        assert attempts["count"] == 2

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self):
        operation, _ = flaky([])
        with pytest.raises(ValueError):
            await retry_with_backoff(operation, max_attempts=0)


class TestIsRetryable:
    """Tests for the default retry predicate."""

    def test_notion_status_codes(self):
        assert is_retryable(NotionAPIError("server", status_code=502))
        assert is_retryable(NotionAPIError("throttled", status_code=429))
        assert not is_retryable(NotionAPIError("invalid", status_code=400))

    def test_plain_exceptions_retry(self):
        assert is_retryable(ConnectionError())
