"""Scrape orchestration: concurrent collector fan-out for one /metrics request."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .collectors.device_collector import DeviceCollector
from .collectors.dex_collector import DexTestCollector
from .collectors.traceroute_collector import TracerouteCollector
from .collectors.tunnel_collector import TunnelCollector
from .collectors.user_collector import UserCollector
from .config.models import ExporterConfig
from .services.cloudflare_client import CloudflareClient
from .services.metric_registry import API_CALLS, API_ERRORS, MetricRegistry
from .services.retry_handler import RetryPolicy
from .services.worker_pool import WorkerPool
from .state import ScrapeContext, ScrapeReport
from .utils.metrics import CollectorResult
from .utils.status import ScrapeState


class ScrapeOrchestrator:
    """
    Runs every enabled collector concurrently for one scrape.

    The only ordering edge between collectors is device -> user: the device
    task always writes the scrape's rendezvous (snapshot or "no data") and the
    user collector reads it. Scrapes are serialized so per-scrape state never
    interleaves.
    """

    def __init__(
        self,
        config: ExporterConfig,
        client: CloudflareClient,
        registry: MetricRegistry,
        logger: Optional[logging.Logger] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        """
        Initialize scrape orchestrator.

        Args:
            config: Exporter configuration, read but never mutated
            client: Upstream API client
            registry: Shared metric registry
            logger: Optional logger instance
            sleep: Retry sleep override for every collector
        """
        self.config = config
        self.client = client
        self.registry = registry
        self.logger = (logger or logging.getLogger(__name__)).getChild("orchestrator")
        self.state = ScrapeState.IDLE
        # Created on first scrape, inside the serving event loop
        self._lock: Optional[asyncio.Lock] = None

        policy = RetryPolicy.from_config(config.retry)
        common = dict(
            client=client,
            retry_policy=policy,
            logger=self.logger,
            evict_stale=config.scrape.evict_stale,
            sleep=sleep,
        )
        self.devices = DeviceCollector(**common)
        self.users = UserCollector(**common)
        self.tunnels = TunnelCollector(**common)
        self.dex = DexTestCollector(**common)
        self.traceroute = TracerouteCollector(**common)
        self.pool = WorkerPool(
            "traceroute",
            max_concurrency=config.collectors.dex_max_concurrency,
            logger=self.logger,
        )

    async def scrape(self) -> ScrapeReport:
        """
        Execute one complete scrape.

        Never raises for collector failures: those are reflected in the
        report, the error counter and the liveness gauge.

        Returns:
            ScrapeReport: Per-collector results and duration
        """
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            self.state = ScrapeState.RUNNING
            start_time = time.monotonic()
            try:
                report = await self._run()
            finally:
                duration = time.monotonic() - start_time
                self.registry.observe_duration(duration)
                self.state = ScrapeState.COMPLETED

            report.duration = duration
            self._log_summary(report)
            return report

    async def _run(self) -> ScrapeReport:
        enabled = self.config.collectors
        context = ScrapeContext.start(
            self.config.cloudflare.account_id,
            self.registry,
            self.config.scrape.timeout_seconds,
        )
        self.registry.set_up(1)
        report = ScrapeReport()

        tasks: Dict[str, Awaitable] = {}
        if enabled.devices:
            tasks["devices"] = self._collect_devices(context)
        else:
            context.device_snapshot.close()
        if enabled.users:
            tasks["users"] = self.users.collect(context)
        if enabled.tunnels:
            tasks["tunnels"] = self.tunnels.collect(context)
        if enabled.dex:
            tasks["dex"] = self._collect_dex(context, report)

        if not tasks:
            self.logger.info("All collectors disabled, nothing to scrape")
            return report

        self.logger.info(f"Starting scrape with {len(tasks)} collector(s): {', '.join(tasks)}")
        results = await asyncio.gather(*tasks.values(), return_exceptions=True)

        for name, result in zip(tasks, results):
            if isinstance(result, BaseException):
                # safe_collect converts collector errors; this only guards orchestrator bugs
                if isinstance(result, asyncio.CancelledError):
                    raise result
                self.logger.error(f"Collector '{name}' raised: {result}", exc_info=result)
                self.registry.record_error(name)
                self.registry.set_up(0)
                result = CollectorResult.failure(name, str(result) or type(result).__name__)
            report.results[name] = result

        return report

    async def _collect_devices(self, context: ScrapeContext) -> CollectorResult:
        """Run the device collector and always settle the rendezvous exactly once."""
        result: Optional[CollectorResult] = None
        try:
            result = await self.devices.collect(context)
        finally:
            if result is not None and result.ok:
                context.device_snapshot.deliver(result.payload)
            else:
                context.device_snapshot.close()
        return result

    async def _collect_dex(self, context: ScrapeContext, report: ScrapeReport) -> CollectorResult:
        """List DEX tests, then fan out one traceroute detail fetch per test id."""
        result = await self.dex.collect(context)
        if not result.ok or not result.payload:
            return result

        report.details = await self.pool.run(
            result.payload,
            lambda test_id: self.traceroute.collect(context, test_id),
        )
        return result

    def _log_summary(self, report: ScrapeReport) -> None:
        failed = report.failed
        self.logger.info(
            f"Scrape completed in {report.duration:.3f}s: "
            f"{len(report.results)} collector(s), {len(report.details)} test detail(s), "
            f"{len(failed)} failure(s)"
        )
        if failed:
            self.logger.warning(f"Failed: {', '.join(sorted(failed))}")
        if self.config.debug:
            self.logger.debug(f"API calls made: {self.registry.total(API_CALLS):.0f}")
            self.logger.debug(f"API errors encountered: {self.registry.total(API_ERRORS):.0f}")
