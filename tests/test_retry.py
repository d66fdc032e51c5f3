"""Tests for retry and timeout helpers."""
import asyncio

import pytest

from fleetcraft.errors import OperationTimeout, ProviderError, ProviderTimeoutError
from fleetcraft.utils.retry import RETRYABLE_EXCEPTIONS, RetryPolicy, call_with_policy, with_retry


class TestWithRetry:
    """Tests for retry decorator."""

    @pytest.mark.asyncio
    async def test_async_success_no_retry(self):
        """Successful async function doesn't retry."""
        call_count = 0

        @with_retry(max_attempts=3)
        async def succeeding_func():
            nonlocal call_count
            call_count += 1
            return "success"

        result = await succeeding_func()
        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_async_retry_then_success(self):
        """Async function retries on failure then succeeds."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.1)
        async def failing_then_succeeding():
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise ConnectionRefusedError("Connection refused")
            return "success"

        result = await failing_then_succeeding()
        assert result == "success"
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_async_max_retries_exceeded(self):
        """Async function raises after max retries."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.1)
        async def always_failing():
            nonlocal call_count
            call_count += 1
            raise TimeoutError("Always times out")

        with pytest.raises(TimeoutError):
            await always_failing()
        assert call_count == 3

    def test_sync_success_no_retry(self):
        """Successful sync function doesn't retry."""
        call_count = 0

        @with_retry(max_attempts=3)
        def succeeding_func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert succeeding_func() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_non_retryable_exception(self):
        """Non-retryable exceptions are not retried."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.1)
        async def raises_value_error():
            nonlocal call_count
            call_count += 1
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await raises_value_error()
        assert call_count == 1


class TestRetryableExceptions:
    """Tests for the default retryable exception set."""

    def test_network_errors_are_retryable(self):
        for exc in (ConnectionRefusedError, ConnectionResetError, TimeoutError, OSError, EOFError):
            assert exc in RETRYABLE_EXCEPTIONS


class TestRetryPolicy:
    """Tests for RetryPolicy validation."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.retry_on == (OperationTimeout,)

    def test_invalid(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError, match="backoff"):
            RetryPolicy(backoff="linear")


class TestCallWithPolicy:
    """Tests for call_with_policy."""

    @pytest.mark.asyncio
    async def test_plain_call(self):
        async def func():
            return 42

        assert await call_with_policy(func) == 42

    @pytest.mark.asyncio
    async def test_timeout_raises_given_error(self):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(ProviderTimeoutError, match="create net_vpc.main timed out after 0.01s"):
            await call_with_policy(slow, timeout=0.01, timeout_error=ProviderTimeoutError,
                                   description="create net_vpc.main")

    @pytest.mark.asyncio
    async def test_timed_out_call_is_retried(self):
        attempts = 0

        async def slow_once():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                await asyncio.sleep(5)
            return "done"

        policy = RetryPolicy(max_attempts=3, delay=0)
        assert await call_with_policy(slow_once, timeout=0.05, policy=policy) == "done"
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        attempts = 0

        async def always_slow():
            nonlocal attempts
            attempts += 1
            await asyncio.sleep(5)

        policy = RetryPolicy(max_attempts=2, delay=0, backoff="fixed")
        with pytest.raises(OperationTimeout):
            await call_with_policy(always_slow, timeout=0.01, policy=policy)
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        attempts = 0

        async def broken():
            nonlocal attempts
            attempts += 1
            raise ProviderError("quota exceeded")

        with pytest.raises(ProviderError):
            await call_with_policy(broken, timeout=1, policy=RetryPolicy(delay=0))
        assert attempts == 1
