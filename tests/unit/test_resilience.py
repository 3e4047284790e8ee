"""
Unit tests for resilience patterns.

Tests retry decorator and timeout helper.
"""

import asyncio

import pytest

from prunarr.services.resilience import ExecutionTimeoutError, with_retry, with_timeout


class TestRetryDecorator:
    """Tests for with_retry."""

    @pytest.mark.asyncio
    async def test_with_retry_success(self):
        """Test retry decorator with successful call."""

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.02)
        async def success():
            return "ok"

        result = await success()
        assert result == "ok"

    @pytest.mark.asyncio
    async def test_with_retry_eventual_success(self):
        """Test retry decorator with eventual success."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.02, retry_exceptions=(ConnectionError,))
        async def eventual_success():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConnectionError("not yet")
            return "ok"

        result = await eventual_success()
        assert result == "ok"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_with_retry_all_fail(self):
        """Test retry decorator when all attempts fail."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.02, retry_exceptions=(ConnectionError,))
        async def always_fail():
            nonlocal call_count
            call_count += 1
            raise ConnectionError("always fails")

        with pytest.raises(ConnectionError):
            await always_fail()

        assert call_count == 3

    @pytest.mark.asyncio
    async def test_with_retry_non_retryable_exception(self):
        """Test retry decorator doesn't retry non-retryable exceptions."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.02, retry_exceptions=(ConnectionError,))
        async def wrong_exception():
            nonlocal call_count
            call_count += 1
            raise TypeError("not retryable")

        with pytest.raises(TypeError):
            await wrong_exception()

        assert call_count == 1  # Only one attempt

    @pytest.mark.asyncio
    async def test_backoff_capped(self, monkeypatch):
        """Test waits double each attempt up to max_wait."""
        waits = []

        async def fake_sleep(seconds):
            waits.append(seconds)

        monkeypatch.setattr("prunarr.services.resilience.asyncio.sleep", fake_sleep)

        @with_retry(max_attempts=5, min_wait=1.0, max_wait=3.0)
        async def always_fail():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await always_fail()

        assert waits == [1.0, 2.0, 3.0, 3.0]


class TestWithTimeout:
    """Tests for timeout helper."""

    @pytest.mark.asyncio
    async def test_timeout_success(self):
        """Test successful completion within timeout."""

        async def quick():
            return "quick"

        result = await with_timeout(quick(), timeout_seconds=1)
        assert result == "quick"

    @pytest.mark.asyncio
    async def test_timeout_exceeded(self):
        """Test timeout when operation takes too long."""

        async def slow():
            await asyncio.sleep(1)
            return "slow"

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await with_timeout(slow(), timeout_seconds=0.1)

        assert "timeout" in str(exc_info.value).lower()

    @pytest.mark.asyncio
    async def test_timeout_custom_message(self):
        """Test timeout with custom error message."""

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await with_timeout(slow(), timeout_seconds=0.1, error_message="Deletion of 'Heat' timed out")

        assert "Deletion of 'Heat' timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_other_errors_pass_through(self):
        """Test errors raised inside the coroutine are not converted."""

        async def broken():
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await with_timeout(broken(), timeout_seconds=1)
