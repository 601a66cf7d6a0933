"""Retry handler with exponential backoff for transient upstream failures."""

import asyncio
import inspect
import random
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, TypeVar, Union

from ..config.models import RetryConfig
from ..errors import is_retryable as default_is_retryable


T = TypeVar('T')

Operation = Callable[[], Union[T, Awaitable[T]]]
RetryCallback = Callable[[int, BaseException, float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable backoff parameters for one call site."""

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    jitter: bool = True

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            multiplier=config.multiplier,
            max_delay=config.max_delay,
            jitter=config.jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Un-jittered delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


class RetryHandler:
    """
    Handles retry logic with exponential backoff and jitter.

    One instance per call site and task: ``attempts`` and ``delays`` describe
    the most recent ``execute`` call and are never shared between tasks.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        is_retryable: Callable[[BaseException], bool] = default_is_retryable,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        on_retry: Optional[RetryCallback] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize retry handler.

        Args:
            policy: Backoff parameters
            is_retryable: Predicate deciding whether an error is transient
            sleep: Awaitable sleep function (asyncio.sleep by default)
            on_retry: Called with (attempt, error, delay) before each backoff
            logger: Optional logger for retry events
        """
        self.policy = policy
        self.is_retryable = is_retryable
        self._sleep = sleep or asyncio.sleep
        self.on_retry = on_retry
        self.logger = logger or logging.getLogger(__name__)

        self.attempts = 0
        self.delays: List[float] = []

    async def execute(self, func: Operation, deadline: Optional[float] = None) -> T:
        """
        Execute operation with exponential backoff retry.

        Args:
            func: Zero-argument callable, sync or async
            deadline: Optional event loop time after which no retry is started

        Returns:
            Result from successful execution

        Raises:
            Exception: Non-retryable error, or the last error once attempts
                are exhausted or the deadline leaves no room for another try
        """
        self.attempts = 0
        self.delays = []
        loop = asyncio.get_running_loop()

        while True:
            self.attempts += 1
            try:
                result = func()
                if inspect.isawaitable(result):
                    result = await result
                return result

            except Exception as e:
                if not self.is_retryable(e):
                    raise

                if self.attempts >= self.policy.max_attempts:
                    self.logger.error(
                        f"All {self.policy.max_attempts} retry attempts exhausted: {e}"
                    )
                    raise

                delay = self._next_delay()
                if deadline is not None and loop.time() + delay >= deadline:
                    self.logger.warning(
                        f"Attempt {self.attempts} failed: {e}. "
                        f"No time left before scrape deadline, giving up"
                    )
                    raise

                self.logger.warning(
                    f"Attempt {self.attempts}/{self.policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s..."
                )
                if self.on_retry is not None:
                    self.on_retry(self.attempts, e, delay)

                self.delays.append(delay)
                await self._sleep(delay)

    def _next_delay(self) -> float:
        delay = self.policy.delay_for(self.attempts)
        if self.policy.jitter:
            delay += random.uniform(0, delay * 0.1)  # Add 0-10% jitter
        # Jitter must not make the sequence decrease near the cap
        if self.delays:
            delay = max(delay, self.delays[-1])
        return delay
