"""Collector outcome and scrape lifecycle enumerations."""

from enum import Enum


class CollectorStatus(Enum):
    """Outcome of a single collector run."""

    SUCCESS = "success"
    FAILURE = "failure"


class ScrapeState(Enum):
    """Lifecycle of one scrape: IDLE -> RUNNING -> COMPLETED."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
