"""Metric data structures for collectors."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple
import time

from .status import CollectorStatus


MetricIdentity = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass(frozen=True)
class MetricSample:
    """One labeled gauge value staged by a collector."""

    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    @classmethod
    def from_pairs(
        cls,
        name: str,
        pairs: Iterable[Tuple[str, Any]],
        value: float
    ) -> "MetricSample":
        """
        Build a sample from (key, value) label pairs.

        Args:
            name: Metric name
            pairs: Label pairs, keys must be unique
            value: Sample value

        Returns:
            MetricSample: The sample

        Raises:
            ValueError: If a label key appears twice
        """
        labels: Dict[str, str] = {}
        for key, label_value in pairs:
            if key in labels:
                raise ValueError(f"Duplicate label '{key}' for metric {name}")
            labels[key] = "" if label_value is None else str(label_value)
        return cls(name=name, labels=labels, value=float(value))

    @property
    def identity(self) -> MetricIdentity:
        """Name plus label set sorted by key; label order does not matter."""
        return self.name, tuple(sorted(self.labels.items()))


@dataclass
class CollectorResult:
    """Standard result format from all collectors."""

    collector_name: str
    status: CollectorStatus
    payload: Any = None  # Typed success payload for dependent collectors
    error: Optional[str] = None
    samples_published: int = 0
    attempts: int = 0
    timestamp: Optional[float] = None

    def __post_init__(self):
        """Set timestamp and check the success/failure invariant."""
        if self.timestamp is None:
            self.timestamp = time.time()

        if self.status == CollectorStatus.SUCCESS and self.error is not None:
            raise ValueError("A successful result cannot carry an error")
        if self.status == CollectorStatus.FAILURE:
            if self.error is None:
                raise ValueError("A failed result must carry a cause")
            if self.payload is not None:
                raise ValueError("A failed result cannot carry a payload")

    @classmethod
    def success(
        cls,
        collector_name: str,
        payload: Any = None,
        samples_published: int = 0,
        attempts: int = 0
    ) -> "CollectorResult":
        return cls(
            collector_name=collector_name,
            status=CollectorStatus.SUCCESS,
            payload=payload,
            samples_published=samples_published,
            attempts=attempts
        )

    @classmethod
    def failure(cls, collector_name: str, error: str, attempts: int = 0) -> "CollectorResult":
        return cls(
            collector_name=collector_name,
            status=CollectorStatus.FAILURE,
            error=error,
            attempts=attempts
        )

    @property
    def ok(self) -> bool:
        return self.status == CollectorStatus.SUCCESS
