"""Concurrent fan-out of per-item detail fetches."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, Iterable, Optional, TypeVar

from ..utils.metrics import CollectorResult


K = TypeVar('K', bound=Hashable)


class WorkerPool:
    """
    Run one task per item and wait until every task has terminated.

    A failing task becomes a failure result for its own item; siblings keep
    running. Completion order is not guaranteed.
    """

    def __init__(
        self,
        name: str,
        max_concurrency: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize worker pool.

        Args:
            name: Name used in failure results and logs
            max_concurrency: Upper bound on running tasks, unbounded if None
            logger: Optional logger instance
        """
        self.name = name
        self.max_concurrency = max_concurrency
        self.logger = logger or logging.getLogger(__name__)

    async def run(
        self,
        items: Iterable[K],
        task: Callable[[K], Awaitable[CollectorResult]]
    ) -> Dict[K, CollectorResult]:
        """
        Fan out over items.

        Args:
            items: Distinct keys, e.g. test ids
            task: Coroutine function producing the result for one key

        Returns:
            dict: Result per item, in input order
        """
        keys = list(dict.fromkeys(items))
        if not keys:
            return {}

        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        async def guarded(key: K) -> CollectorResult:
            if semaphore is None:
                return await task(key)
            async with semaphore:
                return await task(key)

        self.logger.debug(f"{self.name}: starting {len(keys)} task(s)")
        outcomes = await asyncio.gather(*(guarded(key) for key in keys), return_exceptions=True)

        results: Dict[K, CollectorResult] = {}
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                self.logger.error(f"{self.name} task for {key} failed: {outcome}")
                results[key] = CollectorResult.failure(self.name, str(outcome) or type(outcome).__name__)
            else:
                results[key] = outcome
        return results
