"""
Exponential backoff retry for asynchronous operations.

Only transient failures (5xx responses, network faults, timeouts) are
retried. Client errors (4xx) propagate on the first attempt.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import NetworkError, RemoteError, RpcTimeoutError
from ..logging_config import get_logger

T = TypeVar("T")

logger = get_logger("retry")

JITTER_LOW = 0.75
JITTER_HIGH = 1.25


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate.

    Retries 5xx remote errors and connectivity failures. Everything else,
    4xx responses included, is permanent.
    """
    if isinstance(error, RemoteError):
        return error.is_server_error
    return isinstance(error, (NetworkError, RpcTimeoutError, ConnectionError))


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for ``with_retry``."""
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    should_retry: Callable[[BaseException], bool] = field(default=is_retryable, compare=False)

    def __post_init__(self):
        """Validate backoff values."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")

    def backoff_ms(self, attempt: int) -> int:
        """Un-jittered delay for a 0-indexed attempt."""
        return min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)

    def delay_seconds(self, attempt: int, rng: random.Random) -> float:
        """Jittered delay in seconds for a 0-indexed attempt."""
        jitter = rng.uniform(JITTER_LOW, JITTER_HIGH)
        return self.backoff_ms(attempt) * jitter / 1000.0


DEFAULT_POLICY = RetryPolicy()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> T:
    """Run ``operation`` with bounded exponential backoff.

    ``operation`` is re-invoked (not re-awaited) on each attempt, so any
    per-call state such as request signatures is rebuilt.

    Args:
        operation: Zero-argument callable returning an awaitable
        policy: Backoff parameters and retry predicate
        sleep: Awaitable sleep, replaceable with a fake clock in tests
        rng: Jitter source, seedable for deterministic tests

    Returns:
        The operation's result

    Raises:
        The last error raised by ``operation``, unchanged
    """
    policy = policy or DEFAULT_POLICY
    rng = rng or random.Random()

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as error:
            if attempt >= policy.max_retries or not policy.should_retry(error):
                raise
            delay = policy.delay_seconds(attempt, rng)
            logger.warning(
                "Retrying after transient failure",
                extra={
                    "attempt": attempt + 1,
                    "max_retries": policy.max_retries,
                    "delay_seconds": round(delay, 3),
                    "error": str(error),
                },
            )
            await sleep(delay)
            attempt += 1
