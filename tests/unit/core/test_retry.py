"""Test cases for retry with backoff and timeouts."""

from __future__ import annotations

import asyncio

import pytest

from apns_resend.core.exceptions import TransportError
from apns_resend.core.retry import (
    RetryTimeoutError,
    compute_backoff,
    with_retry,
    with_timeout,
)


class TestComputeBackoff:
    """Test cases for backoff delay computation."""

    def test_exponential_growth(self) -> None:
        """Test delays grow by the backoff factor."""
        delays = [
            compute_backoff(attempt, base_delay=0.5, backoff_factor=2.0, max_delay=30.0, jitter=False)
            for attempt in range(4)
        ]
        assert delays == [0.5, 1.0, 2.0, 4.0]

    def test_capped_at_max_delay(self) -> None:
        """Test delays never exceed the cap."""
        delay = compute_backoff(10, base_delay=1.0, backoff_factor=2.0, max_delay=5.0, jitter=False)
        assert delay == 5.0

    def test_jitter_stays_in_range(self) -> None:
        """Test jitter scales the delay into [0.5, 1.5)."""
        for _ in range(50):
            delay = compute_backoff(0, base_delay=1.0, backoff_factor=2.0, max_delay=5.0, jitter=True)
            assert 0.5 <= delay < 1.5


class TestWithTimeout:
    """Test cases for the timeout decorator."""

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        """Test slow functions raise RetryTimeoutError."""

        @with_timeout(0.01)
        async def slow() -> str:
            await asyncio.sleep(1)
            return "late"

        with pytest.raises(RetryTimeoutError):
            _ = await slow()

    @pytest.mark.asyncio
    async def test_fast_function_passes(self) -> None:
        """Test fast functions return their result."""

        @with_timeout(1.0)
        async def fast() -> str:
            return "ok"

        assert await fast() == "ok"


class TestWithRetry:
    """Test cases for the retry decorator."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self) -> None:
        """Test the function is retried until it succeeds."""
        call_count = 0

        @with_retry(3, base_delay=0.001, jitter=False, retry_on=(TransportError,))
        async def flaky() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise TransportError("refused")
            return "connected"

        assert await flaky() == "connected"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_last_error_propagates(self) -> None:
        """Test the last exception is raised after the final attempt."""
        call_count = 0

        @with_retry(2, base_delay=0.001, jitter=False, retry_on=(TransportError,))
        async def broken() -> None:
            nonlocal call_count
            call_count += 1
            raise TransportError(f"attempt {call_count}")

        with pytest.raises(TransportError, match="attempt 2"):
            await broken()
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self) -> None:
        """Test exceptions outside retry_on propagate immediately."""
        call_count = 0

        @with_retry(3, base_delay=0.001, retry_on=(TransportError,))
        async def wrong() -> None:
            nonlocal call_count
            call_count += 1
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            await wrong()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self) -> None:
        """Test attempts exceeding the timeout count as failures."""
        call_count = 0

        @with_retry(2, base_delay=0.001, timeout_seconds=0.01, retry_on=(TransportError,))
        async def hanging() -> None:
            nonlocal call_count
            call_count += 1
            await asyncio.sleep(1)

        with pytest.raises(RetryTimeoutError):
            await hanging()
        assert call_count == 2

    def test_invalid_attempts(self) -> None:
        """Test at least one attempt is required."""
        with pytest.raises(ValueError, match="at least 1"):
            _ = with_retry(0)
