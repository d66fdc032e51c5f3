"""Retry and timeout helpers shared by providers and executors."""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from ..errors import OperationTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Common network exceptions to retry on
RETRYABLE_EXCEPTIONS = (
    ConnectionRefusedError,
    ConnectionResetError,
    TimeoutError,
    OSError,
    EOFError,
)


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
) -> Callable:
    """Decorator factory for retry logic with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
        exceptions: Tuple of exception types to retry on
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        policy = retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        if inspect.iscoroutinefunction(func):
            @policy
            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> T:
                return await func(*args, **kwargs)  # type: ignore[misc]
            return async_wrapper  # type: ignore[return-value]

        @policy
        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            return func(*args, **kwargs)
        return sync_wrapper

    return decorator


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a timed-out call is retried."""
    max_attempts: int = 3
    delay: float = 1.0
    backoff: str = "exponential"  # fixed | exponential
    max_delay: float = 30.0
    retry_on: tuple = (OperationTimeout,)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff not in ("fixed", "exponential"):
            raise ValueError(f"Unknown backoff '{self.backoff}'")

    def wait(self):
        if self.backoff == "fixed":
            return wait_fixed(self.delay)
        return wait_exponential(multiplier=self.delay, max=self.max_delay)


async def call_with_policy(
    func: Callable[[], Awaitable[T]],
    timeout: Optional[float] = None,
    policy: Optional[RetryPolicy] = None,
    timeout_error: type = OperationTimeout,
    description: str = "call",
) -> T:
    """Await ``func()`` with an optional timeout and retry policy.

    A call exceeding ``timeout`` raises ``timeout_error``. Without a policy
    the first failure propagates.
    """
    async def attempt() -> T:
        if timeout is None:
            return await func()
        try:
            return await asyncio.wait_for(func(), timeout)
        except asyncio.TimeoutError:
            raise timeout_error(f"{description} timed out after {timeout}s")

    if policy is None or policy.max_attempts <= 1:
        return await attempt()

    async for attempt_ctx in AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.wait(),
        retry=retry_if_exception_type(policy.retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt_ctx:
            result = await attempt()
    return result
