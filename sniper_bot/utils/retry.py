"""
Retry helpers for robust async operations.

Provides linear or exponential backoff for gateway calls.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def retry_call(
    func: Callable[[], Awaitable[T]],
    attempts: int = 1,
    delay: float = 0.5,
    backoff: str = "linear",
    exceptions: tuple = (Exception,),
    timeout: Optional[float] = None,
    label: str = "",
) -> T:
    """
    Await ``func()`` up to ``attempts`` times.

    Args:
        func: Zero-argument coroutine factory
        attempts: Total number of tries (>= 1)
        delay: Base delay between tries (seconds)
        backoff: "linear" waits delay * attempt, "exponential" delay * 2 ** (attempt - 1)
        exceptions: Exception types that trigger a retry
        timeout: Per-attempt timeout; a timeout counts as a failed attempt
        label: Name used in log lines
    """
    attempts = max(1, attempts)
    name = label or getattr(func, "__name__", "call")
    retry_on = tuple(exceptions) + ((asyncio.TimeoutError,) if timeout is not None else ())

    for attempt in range(1, attempts + 1):
        try:
            if timeout is not None:
                return await asyncio.wait_for(func(), timeout=timeout)
            return await func()
        except retry_on as e:
            if attempt == attempts:
                logger.error(
                    f"{name} failed after {attempts} attempts",
                    extra={'extra_data': {"function": name, "attempts": attempts, "error": str(e)}}
                )
                raise

            if backoff == "exponential":
                current_delay = delay * (2 ** (attempt - 1))
            else:
                current_delay = delay * attempt

            logger.warning(
                f"🔄 {name} failed, retrying in {current_delay:.1f}s",
                extra={'extra_data': {
                    "function": name,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error": str(e),
                }}
            )
            await asyncio.sleep(current_delay)

    raise RuntimeError("unreachable")


def async_retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: str = "exponential",
    exceptions: tuple = (Exception,)
):
    """
    Decorator form of retry_call.

    Example:
        @async_retry(max_attempts=3, delay=0.5)
        async def fetch_price():
            ...
    """
    def decorator(func: Callable[..., Awaitable[Any]]):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_call(
                lambda: func(*args, **kwargs),
                attempts=max_attempts,
                delay=delay,
                backoff=backoff,
                exceptions=exceptions,
                label=func.__name__,
            )
        return wrapper
    return decorator
