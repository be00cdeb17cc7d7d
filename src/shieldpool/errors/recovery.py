"""Retry with backoff for ledger and event-log calls.

The client core never retries invariant violations; only errors marked
``retryable`` (transport failures) go through ``RetryPolicy``.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Awaitable, Callable, List, TypeVar

from .exceptions import LedgerError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry policy configuration."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: List[type] = field(default_factory=lambda: [LedgerError])

    def get_delay(self, attempt: int) -> float:
        """Get delay for the given attempt."""
        if attempt <= 0:
            return 0.0

        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= random.uniform(0.5, 1.5)

        return delay

    def is_retryable(self, error: Exception) -> bool:
        """Check whether an exception may be retried under this policy."""
        if getattr(error, "retryable", False):
            return True
        return any(isinstance(error, exc_type) for exc_type in self.retryable_exceptions)

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``func`` until it succeeds or the retry budget is spent."""
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.is_retryable(e) or attempt >= self.max_retries:
                    raise
                attempt += 1
                delay = self.get_delay(attempt)
                logger.warning(
                    f"{getattr(func, '__name__', 'call')} failed ({e}); "
                    f"retry {attempt}/{self.max_retries} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)


def with_retry(policy: RetryPolicy):
    """Decorator that retries an async callable according to ``policy``."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await policy.run(func, *args, **kwargs)

        return wrapper

    return decorator
