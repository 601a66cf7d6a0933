"""Per-test traceroute detail collector, run once per DEX test id."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from ..errors import UpstreamDecodeError
from ..services.cloudflare_client import TimeWindow
from ..state import ScrapeContext
from ..utils.metrics import CollectorResult, MetricSample
from .base import BaseCollector, safe_collect


DETAIL_WINDOW = timedelta(hours=1)

# Upstream stats series -> exported metric name
SERIES_METRICS = {
    "roundTripTimeMs": "zerotrust_traceroute_rtt",
    "hopsCount": "zerotrust_traceroute_hops",
    "packetLossPct": "zerotrust_traceroute_packet_loss",
    "availabilityPct": "zerotrust_traceroute_availability",
}


def latest_slot(slots: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Most recent slot of a series.

    Timestamps are compared as strings: the API uses a fixed-width sortable
    format, so lexicographic order is chronological order.
    """
    latest = None
    for slot in slots:
        timestamp = slot.get("timestamp") or ""
        if latest is None or timestamp > (latest.get("timestamp") or ""):
            latest = slot
    return latest


@dataclass(frozen=True)
class TracerouteDetail:
    """Latest value per measured series of one traceroute test."""

    test_id: str
    kind: str
    name: str = ""
    host: str = ""
    latest: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, test_id: str, data: Dict[str, Any]) -> "TracerouteDetail":
        if not isinstance(data, dict):
            raise UpstreamDecodeError(f"Traceroute test {test_id}: result is not an object")
        stats = data.get("tracerouteStats") or {}
        latest: Dict[str, float] = {}
        for series in SERIES_METRICS:
            slot = latest_slot((stats.get(series) or {}).get("slots") or [])
            if slot is not None:
                try:
                    latest[series] = float(slot.get("value") or 0)
                except (TypeError, ValueError) as e:
                    raise UpstreamDecodeError(f"Traceroute test {test_id}: bad {series} value") from e
        return cls(
            test_id=test_id,
            kind=data.get("kind") or "",
            name=data.get("name") or "",
            host=data.get("host") or "",
            latest=latest,
        )

    def to_samples(self) -> List[MetricSample]:
        labels = [("test_id", self.test_id), ("test_name", self.name), ("host", self.host)]
        return [
            MetricSample.from_pairs(SERIES_METRICS[series], labels, value)
            for series, value in self.latest.items()
        ]


class TracerouteCollector(BaseCollector):
    """
    Collector for a single test's traceroute statistics.

    Shared by all fan-out tasks of a scrape; every call builds its own retry
    handler, so attempts are counted per test.
    """

    name = "traceroute"
    # Series of many tests share these families; one test's run never evicts another's
    metric_families = ()

    def _publish(self, context, samples) -> int:
        return context.registry.publish(samples)

    @safe_collect
    async def collect(self, context: ScrapeContext, test_id: str) -> CollectorResult:
        """
        Fetch one test's statistics and publish the latest value per series.

        Non-traceroute tests succeed without samples. 503/504 responses are
        retried within the attempt budget.
        """
        window = TimeWindow.last(DETAIL_WINDOW, start_param="timeStart", end_param="timeEnd")
        data, attempts = await self._fetch(
            context,
            lambda: self.client.get(
                "traceroute_tests",
                context.account_id,
                test_id,
                window=window,
                params={"interval": "minute"},
            )
        )

        detail = TracerouteDetail.from_payload(test_id, data)
        if detail.kind != "traceroute":
            self.logger.debug(f"Skipping test {test_id} of kind {detail.kind!r}")
            return CollectorResult.success(self.name, payload=detail, attempts=attempts)

        published = self._publish(context, detail.to_samples())
        return CollectorResult.success(
            self.name,
            payload=detail,
            samples_published=published,
            attempts=attempts
        )
