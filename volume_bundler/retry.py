"""
Retry with exponential backoff and jitter for transient network operations.
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, TypeVar

from .errors import OperationCancelledError, RetryExhaustedError
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Backoff configuration.

    max_retries is the total number of attempts. An empty
    retryable_errors list treats every error as retryable; otherwise an
    error is retried only if its message contains one of the substrings
    (case-insensitive).
    """
    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    retryable_errors: List[str] = field(default_factory=list)
    jitter: float = 0.3

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be >= 0")
        if not 0 <= self.jitter < 1:
            raise ValueError(f"jitter must be in [0, 1), got {self.jitter}")

    def is_retryable(self, error: BaseException) -> bool:
        if not self.retryable_errors:
            return True
        message = str(error).lower()
        return any(matcher.lower() in message for matcher in self.retryable_errors)

    def backoff(self, attempt: int) -> float:
        """Un-jittered delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


@dataclass
class RetryStats:
    operation: str
    attempts: int
    duration: float
    succeeded: bool


class RetryExecutor:
    """Runs async operations under a RetryPolicy."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        cancel_event: Optional[asyncio.Event] = None
    ):
        self.policy = policy or RetryPolicy()
        self.rng = rng or random.Random()
        self._sleep = sleep
        self.cancel_event = cancel_event
        self.last_stats: Optional[RetryStats] = None

    def _delay(self, policy: RetryPolicy, attempt: int) -> float:
        base = policy.backoff(attempt)
        factor = 1 + self.rng.uniform(-policy.jitter, policy.jitter)
        return max(0.0, base * factor)

    async def _wait(self, delay: float, operation: str):
        if self.cancel_event is None:
            await self._sleep(delay)
            return
        if self.cancel_event.is_set():
            raise OperationCancelledError(f"{operation} cancelled before retry")
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise OperationCancelledError(f"{operation} cancelled during backoff")

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str = "operation",
        policy: Optional[RetryPolicy] = None
    ) -> T:
        """
        Execute operation with retries.

        Args:
            operation: Zero-argument coroutine function
            name: Operation name for logs and errors
            policy: Per-call override of the executor's policy

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: The original error, immediately, if it is not retryable
            RetryExhaustedError: After max_retries failed attempts (chained from the last error)
            OperationCancelledError: If the cancel event is set during backoff
        """
        policy = policy or self.policy
        started = time.monotonic()
        attempt = 0
        last_error: Optional[Exception] = None

        while attempt < policy.max_retries:
            attempt += 1
            try:
                result = await operation()
            except Exception as e:
                last_error = e
                if not policy.is_retryable(e):
                    self._record(name, attempt, started, succeeded=False)
                    logger.error(f"{name} failed with non-retryable error on attempt {attempt}: {e}")
                    raise
                if attempt >= policy.max_retries:
                    break
                delay = self._delay(policy, attempt)
                logger.warning(
                    f"{name} attempt {colors['YELLOW']}{attempt}/{policy.max_retries}{colors['RESET']} failed: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                await self._wait(delay, name)
                continue

            stats = self._record(name, attempt, started, succeeded=True)
            if attempt > 1:
                logger.info(f"{name} succeeded after {attempt} attempts ({stats.duration:.2f}s)")
            else:
                logger.debug(f"{name} succeeded on first attempt ({stats.duration:.2f}s)")
            return result

        self._record(name, attempt, started, succeeded=False)
        logger.error(
            f"{colors['RED']}{name} failed after {attempt} attempts{colors['RESET']}: {last_error}"
        )
        raise RetryExhaustedError(name, attempt, last_error) from last_error

    def _record(self, name: str, attempts: int, started: float, succeeded: bool) -> RetryStats:
        self.last_stats = RetryStats(
            operation=name,
            attempts=attempts,
            duration=time.monotonic() - started,
            succeeded=succeeded
        )
        return self.last_stats
