"""Base collector abstract class for all resource collectors."""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
import asyncio
import logging
import time
from functools import wraps

from ..services.cloudflare_client import CloudflareClient, TimeWindow
from ..services.retry_handler import RetryHandler, RetryPolicy
from ..state import ScrapeContext
from ..utils.metrics import CollectorResult, MetricSample


class BaseCollector(ABC):
    """Abstract base class for all collectors."""

    name: str = "base"
    # Metric names this collector owns, used for stale series eviction
    metric_families: Tuple[str, ...] = ()
    # Stop before the shared deadline so dependents still see the outcome in time
    early_cutoff: bool = False

    def __init__(
        self,
        client: CloudflareClient,
        retry_policy: RetryPolicy,
        logger: logging.Logger,
        evict_stale: bool = False,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        """
        Initialize base collector.

        Args:
            client: Upstream API client
            retry_policy: Backoff applied to each upstream call
            logger: Logger instance
            evict_stale: Drop series this collector no longer reports
            sleep: Sleep used between retries (tests pass a no-op)
        """
        self.client = client
        self.retry_policy = retry_policy
        self.evict_stale = evict_stale
        self._sleep = sleep
        self.logger = logger.getChild(self.__class__.__name__)

    @abstractmethod
    async def collect(self, context: ScrapeContext) -> CollectorResult:
        """
        Fetch one resource kind and publish its samples.

        Returns:
            CollectorResult: Success with a typed payload, or failure

        Note:
            Implementations use the @safe_collect decorator, which turns
            any exception into a failure result.
        """
        pass

    def _retry_handler(self, context: ScrapeContext) -> RetryHandler:
        """Fresh handler per call; retry state is never shared between tasks."""
        return RetryHandler(
            self.retry_policy,
            sleep=self._sleep,
            on_retry=lambda attempt, error, delay: context.registry.record_retry(self.name),
            logger=self.logger,
        )

    async def _fetch(self, context: ScrapeContext, func: Callable[[], Awaitable[Any]]) -> Tuple[Any, int]:
        """
        Run one upstream call under the retry policy and scrape deadline.

        Returns:
            tuple: (value, number of attempts made)
        """
        handler = self._retry_handler(context)
        value = await handler.execute(func, deadline=context.cutoff(self.early_cutoff))
        return value, handler.attempts

    async def _list_all(
        self,
        context: ScrapeContext,
        kind: str,
        params: Optional[Dict[str, Any]] = None,
        window: Optional[TimeWindow] = None
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Fetch every page of a collection, each page retried on its own.

        A page that still fails after retries aborts the whole listing.

        Returns:
            tuple: (all items, total attempts across pages)
        """
        items: List[Dict[str, Any]] = []
        attempts = 0
        page = 1
        while True:
            page_params = dict(params or {})
            page_params.update({"page": page, "per_page": self.client.config.page_size})
            (page_items, info), page_attempts = await self._fetch(
                context,
                lambda: self.client.list(kind, context.account_id, page_params, window)
            )
            attempts += page_attempts
            items.extend(page_items)
            if page >= info.total_pages or not page_items:
                return items, attempts
            page += 1

    def _publish(self, context: ScrapeContext, samples: Iterable[MetricSample]) -> int:
        """Write the fully staged batch into the scrape's registry."""
        return context.registry.publish(
            samples,
            families=self.metric_families,
            evict_stale=self.evict_stale
        )


def safe_collect(func):
    """
    Decorator bounding a collector run by the scrape deadline and isolating failures.

    Any exception, including the deadline expiring, is logged, counted in the
    API error counter, zeroes the liveness gauge and is returned as a failure
    result instead of propagating to the orchestrator.

    Args:
        func: Collector method to wrap

    Returns:
        Wrapped coroutine function
    """
    @wraps(func)
    async def wrapper(self, context: ScrapeContext, *args, **kwargs):
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                func(self, context, *args, **kwargs),
                timeout=context.remaining(self.early_cutoff)
            )
            self.logger.debug(f"Collected in {time.monotonic() - start:.3f}s")
            return result
        except asyncio.TimeoutError:
            error = "scrape deadline exceeded"
            self.logger.error(f"Collection failed: {error}")
        except Exception as e:
            error = str(e) or type(e).__name__
            self.logger.error(f"Collection failed: {error}", exc_info=True)

        context.registry.record_error(self.name)
        context.registry.set_up(0)
        return CollectorResult.failure(self.name, error)
    return wrapper
