"""DEX endpoint test collector."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from ..errors import UpstreamDecodeError
from ..services.cloudflare_client import TimeWindow
from ..state import ScrapeContext
from ..utils.metrics import CollectorResult, MetricSample
from .base import BaseCollector, safe_collect


DEX_TEST_1H_AVG = "zerotrust_dex_test_1h_avg_ms"

TEST_WINDOW = timedelta(hours=1)

# Test kind -> (results block, series holding the latency history)
LATENCY_SERIES = {
    "traceroute": ("tracerouteResults", "roundTripTime"),
    "http": ("httpResults", "resourceFetchTime"),
}


def one_hour_average(data: Dict[str, Any], kind: str) -> Optional[float]:
    """
    Average latency of the one-hour history window, None when absent.

    Args:
        data: Raw test entry
        kind: Test kind, only traceroute and http carry latency history
    """
    if kind not in LATENCY_SERIES:
        return None
    block, series = LATENCY_SERIES[kind]
    results = data.get(block) or {}
    history = (results.get(series) or {}).get("history") or []
    for entry in history:
        period = entry.get("timePeriod") or {}
        if period.get("value") == 1 and period.get("units") == "hours":
            return float(entry.get("avgMs") or 0)
    return None


@dataclass(frozen=True)
class DexTest:
    """Configured DEX test with its one-hour latency, if reported."""

    id: str
    name: str = ""
    kind: str = ""
    enabled: bool = True
    description: str = ""
    host: str = ""
    avg_1h_ms: Optional[float] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "DexTest":
        if not isinstance(data, dict) or not data.get("id"):
            raise UpstreamDecodeError(f"DEX test entry without id: {data!r}")
        kind = data.get("kind") or ""
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            kind=kind,
            enabled=bool(data.get("enabled", True)),
            description=data.get("description") or "",
            host=data.get("host") or "",
            avg_1h_ms=one_hour_average(data, kind),
        )

    def to_sample(self) -> Optional[MetricSample]:
        if self.avg_1h_ms is None:
            return None
        return MetricSample.from_pairs(
            DEX_TEST_1H_AVG,
            [
                ("test_id", self.id),
                ("test_name", self.name),
                ("description", self.description),
                ("host", self.host),
                ("kind", self.kind),
            ],
            self.avg_1h_ms,
        )


class DexTestCollector(BaseCollector):
    """
    Collector for the DEX test listing.

    Publishes the one-hour average per test and returns every test id; the
    orchestrator feeds those ids to the traceroute detail fan-out.
    """

    name = "dex"
    metric_families = (DEX_TEST_1H_AVG,)

    @safe_collect
    async def collect(self, context: ScrapeContext) -> CollectorResult:
        window = TimeWindow.last(TEST_WINDOW, start_param="timeStart", end_param="timeEnd")
        items, attempts = await self._list_all(context, "dex_tests", window=window)

        tests: Dict[str, DexTest] = {}
        for item in items:
            test = DexTest.from_payload(item)
            tests[test.id] = test

        samples: List[MetricSample] = []
        for test in tests.values():
            sample = test.to_sample()
            if sample is not None:
                samples.append(sample)

        published = self._publish(context, samples)
        self.logger.debug(f"Fetched {len(tests)} DEX test(s), {published} with a 1h average")
        return CollectorResult.success(
            self.name,
            payload=list(tests),
            samples_published=published,
            attempts=attempts
        )
