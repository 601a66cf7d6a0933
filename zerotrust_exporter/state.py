"""Per-scrape state shared between the orchestrator and collectors."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .services.metric_registry import MetricRegistry
from .services.rendezvous import Rendezvous
from .utils.metrics import CollectorResult


# Producers stop this much before the shared deadline: 10 % of it, at most 1 s
HANDOFF_MARGIN_RATIO = 0.1
HANDOFF_MARGIN_MAX = 1.0


@dataclass
class ScrapeContext:
    """
    Ephemeral state of one scrape.

    Created by the orchestrator when a scrape starts and dropped when it
    completes. ``deadline`` is an event loop time shared by every upstream
    call and retry loop of the scrape. Producers that other tasks wait on
    stop at the slightly earlier ``handoff_deadline`` so their consumers are
    released before the shared deadline.
    """

    account_id: str
    registry: MetricRegistry
    deadline: float
    handoff_deadline: Optional[float] = None
    device_snapshot: Rendezvous = field(default_factory=lambda: Rendezvous("device_snapshot"))

    @classmethod
    def start(
        cls,
        account_id: str,
        registry: MetricRegistry,
        timeout: float
    ) -> "ScrapeContext":
        deadline = asyncio.get_running_loop().time() + timeout
        margin = min(HANDOFF_MARGIN_MAX, timeout * HANDOFF_MARGIN_RATIO)
        return cls(
            account_id=account_id,
            registry=registry,
            deadline=deadline,
            handoff_deadline=deadline - margin,
        )

    def cutoff(self, early: bool = False) -> float:
        """Loop time a task must finish by; ``early`` selects the handoff deadline."""
        if early and self.handoff_deadline is not None:
            return self.handoff_deadline
        return self.deadline

    def remaining(self, early: bool = False) -> float:
        """Seconds left before the cutoff, never negative."""
        return max(0.0, self.cutoff(early) - asyncio.get_running_loop().time())


@dataclass
class ScrapeReport:
    """What happened during one scrape."""

    results: Dict[str, CollectorResult] = field(default_factory=dict)
    details: Dict[str, CollectorResult] = field(default_factory=dict)  # Per DEX test id
    duration: float = 0.0

    @property
    def failed(self) -> Dict[str, CollectorResult]:
        failures = {name: r for name, r in self.results.items() if not r.ok}
        failures.update({f"traceroute:{k}": r for k, r in self.details.items() if not r.ok})
        return failures

    def payload(self, collector: str) -> Optional[Any]:
        result = self.results.get(collector)
        return result.payload if result is not None and result.ok else None
