"""
Retry utilities with exponential backoff for async functions.

Engine mutations run under a row lock plus an optimistic version check.
When the version check loses a race the whole unit of work is rolled back
and raised as a RetryableError; the decorator below replays the operation
against fresh state. Business rule violations are NonRetryableError and
surface immediately.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

class RetryableError(Exception):
    """
    Exception that should be retried with exponential backoff.

    Used for transient failures that may succeed on a fresh attempt:
    - Optimistic version conflicts (another request committed first)
    - Database connection timeouts and serialization failures
    - Lock wait timeouts
    """
    pass

class NonRetryableError(Exception):
    """
    Exception that should NOT be retried.

    Used for permanent, deterministic failures that won't change on retry:
    - Authorization failures (not a co-owner, not the proposer)
    - Missing proposals, vehicles or funds
    - Validation errors and invalid state transitions
    """
    pass


DEFAULT_RETRY_ON: Tuple[Type[BaseException], ...] = (
    RetryableError,
    asyncio.TimeoutError,
)


def async_retry(
    max_attempts: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = DEFAULT_RETRY_ON,
) -> Callable[[F], F]:
    """Decorator for async functions with exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds between retries (default: 0.05)
        max_delay: Maximum delay in seconds between retries (default: 2.0)
        retry_on: Exception types that trigger another attempt

    Returns:
        Decorated async function with retry logic

    Example:
        @async_retry(max_attempts=3, base_delay=0.05)
        async def vote(self, proposal_id, voter_id, is_approve):
            ...

    Error Handling:
    - NonRetryableError: raised immediately without retry
    - Types listed in retry_on: retried up to max_attempts times
    - Anything else: raised immediately (programming errors are not masked)

    Backoff Strategy:
    - delay = base_delay * (2 ^ attempt), capped at max_delay
    - Logs a warning for each retry and an error when attempts run out
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)

                except NonRetryableError:
                    raise

                except retry_on as e:
                    last_exception = e
                    if attempt < max_attempts - 1:
                        delay = min(base_delay * (2 ** attempt), max_delay)
                        logger.warning(
                            f"Retry attempt {attempt + 1}/{max_attempts} for {func.__name__}. "
                            f"Error: {str(e)}. Waiting {delay:.2f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"All {max_attempts} attempts failed for {func.__name__}. "
                            f"Final error: {str(e)}"
                        )

            raise last_exception

        return wrapper
    return decorator
