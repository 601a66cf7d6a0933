"""Dynamically keyed metric registry backed by prometheus_client.

Collectors do not know their label sets up front: every device, user, tunnel
or test produces its own series. ``MetricRegistry`` keeps one gauge family per
metric name inside a private ``CollectorRegistry`` and hands out children with
get-or-create semantics:

- identity is the metric name plus the label set; label order is irrelevant
  because label names are sorted when a family is created,
- a family's label names are fixed by its first sample; a later sample with a
  different key set is rejected,
- a series persists with its latest value until removed. ``publish`` can drop
  series of the published families that a run no longer reports.

The registry also owns the exporter's own metrics (liveness, scrape duration,
API call, error and retry counters).
"""

import logging
import threading
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from ..utils.metrics import MetricIdentity, MetricSample


UP = "zerotrust_exporter_up"
SCRAPE_DURATION = "zerotrust_exporter_scrape_duration_seconds"
API_CALLS = "zerotrust_exporter_api_calls_total"
API_ERRORS = "zerotrust_exporter_api_errors_total"
API_RETRIES = "zerotrust_exporter_api_retries_total"

# Help strings for families created on demand
HELP = {
    "zerotrust_devices_status": "Connected Zero Trust devices (1 = connected)",
    "zerotrust_users_up": "Access users with a connected device",
    "zerotrust_tunnels_up": "Cloudflare tunnel health (1 = healthy)",
    "zerotrust_dex_test_1h_avg_ms": "DEX test average latency over the last hour in milliseconds",
    "zerotrust_traceroute_rtt": "Latest traceroute round trip time in milliseconds",
    "zerotrust_traceroute_hops": "Latest traceroute hop count",
    "zerotrust_traceroute_packet_loss": "Latest traceroute packet loss percentage",
    "zerotrust_traceroute_availability": "Latest traceroute availability percentage",
    API_CALLS: "Cloudflare API requests issued",
    API_ERRORS: "Collector runs that failed",
    API_RETRIES: "Upstream calls retried after a transient failure",
}

# Child metric returned by labels(), or the family itself when unlabeled
GaugeHandle = Union[Gauge, object]


class MetricRegistry:
    """
    Thread-safe get-or-create registry for dynamically labeled gauges.

    One instance is created by the application and injected into every
    collector.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize metric registry.

        Args:
            registry: Backing prometheus registry, a fresh one by default
            logger: Optional logger instance
        """
        self.registry = registry or CollectorRegistry()
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()

        self._gauges: Dict[str, Gauge] = {}
        self._label_names: Dict[str, Tuple[str, ...]] = {}
        self._series: Dict[str, Set[Tuple[str, ...]]] = {}
        self._counters: Dict[str, Counter] = {}

        self.up = Gauge(UP, "1 if the last scrape completed without upstream errors", registry=self.registry)
        self.up.set(1)
        self.scrape_duration = Histogram(
            SCRAPE_DURATION,
            "Duration of a full scrape in seconds",
            registry=self.registry,
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

    # ------------------------------------------------------------------
    # Dynamic gauges
    # ------------------------------------------------------------------

    def get_or_create_gauge(self, name: str, labels: Optional[Mapping[str, str]] = None) -> GaugeHandle:
        """
        Return the gauge child for an identity, creating it if needed.

        Calling twice with the same identity returns the same handle.

        Raises:
            ValueError: If the family exists with different label names
        """
        labels = dict(labels or {})
        label_names = tuple(sorted(labels))

        with self._lock:
            gauge = self._gauges.get(name)
            if gauge is None:
                gauge = Gauge(name, HELP.get(name, name), label_names, registry=self.registry)
                self._gauges[name] = gauge
                self._label_names[name] = label_names
                self._series[name] = set()
            elif self._label_names[name] != label_names:
                raise ValueError(
                    f"Metric {name} has labels {self._label_names[name]}, got {label_names}"
                )

            if not label_names:
                self._series[name].add(())
                return gauge

            values = tuple(labels[key] for key in label_names)
            self._series[name].add(values)
            return gauge.labels(*values)

    @staticmethod
    def set(handle: GaugeHandle, value: float) -> None:
        handle.set(value)

    def publish(
        self,
        samples: Iterable[MetricSample],
        families: Iterable[str] = (),
        evict_stale: bool = False
    ) -> int:
        """
        Write a batch of staged samples.

        Label sets are validated for the whole batch before any value is
        written, so a bad sample leaves the registry untouched.

        Args:
            samples: Samples produced by one collector run
            families: Metric names owned by the caller, used for eviction
            evict_stale: Remove series of ``families`` absent from this batch

        Returns:
            int: Number of samples written

        Raises:
            ValueError: If a sample conflicts with an existing family
        """
        batch: List[MetricSample] = list(samples)

        with self._lock:
            seen: Dict[str, Tuple[str, ...]] = {}
            for sample in batch:
                label_names = tuple(sorted(sample.labels))
                expected = self._label_names.get(sample.name, seen.get(sample.name, label_names))
                if expected != label_names:
                    raise ValueError(
                        f"Metric {sample.name} has labels {expected}, got {label_names}"
                    )
                seen[sample.name] = label_names

            for sample in batch:
                self.set(self.get_or_create_gauge(sample.name, sample.labels), sample.value)

            if evict_stale:
                fresh = {sample.identity for sample in batch}
                self._evict(set(families) | set(seen), fresh)

        return len(batch)

    def _evict(self, families: Set[str], fresh: Set[MetricIdentity]) -> None:
        for name in families:
            gauge = self._gauges.get(name)
            if gauge is None:
                continue
            label_names = self._label_names[name]
            for values in list(self._series[name]):
                identity = (name, tuple(zip(label_names, values)))
                if identity in fresh:
                    continue
                if label_names:
                    gauge.remove(*values)
                self._series[name].discard(values)
                self.logger.debug(f"Evicted stale series {identity}")

    def remove(self, name: str, labels: Mapping[str, str]) -> bool:
        """Drop one series; returns False if it was not registered."""
        with self._lock:
            label_names = self._label_names.get(name)
            if label_names is None or tuple(sorted(labels)) != label_names:
                return False
            values = tuple(labels[key] for key in label_names)
            if values not in self._series[name]:
                return False
            if label_names:
                self._gauges[name].remove(*values)
            self._series[name].discard(values)
            return True

    def snapshot(self) -> Dict[MetricIdentity, float]:
        """Current value of every dynamically created series."""
        with self._lock:
            result: Dict[MetricIdentity, float] = {}
            for gauge in self._gauges.values():
                for family in gauge.collect():
                    for sample in family.samples:
                        result[(sample.name, tuple(sorted(sample.labels.items())))] = sample.value
            return result

    # ------------------------------------------------------------------
    # Exporter self-metrics
    # ------------------------------------------------------------------

    def increment(self, name: str, labels: Optional[Mapping[str, str]] = None, amount: float = 1) -> None:
        """Increment a counter, creating it with the given label names on first use."""
        labels = dict(labels or {})
        label_names = tuple(sorted(labels))
        with self._lock:
            counter = self._counters.get(name)
            if counter is None:
                counter = Counter(name, HELP.get(name, name), label_names, registry=self.registry)
                self._counters[name] = counter
        if label_names:
            counter.labels(**labels).inc(amount)
        else:
            counter.inc(amount)

    def observe_duration(self, elapsed: float) -> None:
        self.scrape_duration.observe(elapsed)

    def set_up(self, value: float) -> None:
        self.up.set(value)

    def record_api_call(self, resource: str) -> None:
        self.increment(API_CALLS, {"resource": resource})

    def record_error(self, collector: str) -> None:
        self.increment(API_ERRORS, {"collector": collector})

    def record_retry(self, collector: str) -> None:
        self.increment(API_RETRIES, {"collector": collector})

    def value(self, name: str, labels: Optional[Mapping[str, str]] = None) -> Optional[float]:
        """Read one sample back, None if it does not exist."""
        return self.registry.get_sample_value(name, dict(labels or {}))

    def total(self, name: str) -> float:
        """Sum of a counter across all label sets."""
        total = 0.0
        for family in self.registry.collect():
            for sample in family.samples:
                if sample.name == name:
                    total += sample.value
        return total

    # ------------------------------------------------------------------
    # Exposition
    # ------------------------------------------------------------------

    def write_all(self) -> bytes:
        """Serialize the whole registry in the Prometheus text format."""
        return generate_latest(self.registry)
