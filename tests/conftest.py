"""Shared pytest configuration and fixtures."""

import httpx
import pytest

from zerotrust_exporter.config.models import ExporterConfig
from zerotrust_exporter.services.cloudflare_client import CloudflareClient
from zerotrust_exporter.services.metric_registry import MetricRegistry
from zerotrust_exporter.services.retry_handler import RetryPolicy
from zerotrust_exporter.state import ScrapeContext
from zerotrust_exporter.utils.logger import setup_logger


ACCOUNT_ID = "acc-123"


def envelope(result, page=1, total_pages=1, success=True):
    """Cloudflare v4 response envelope."""
    return {
        "success": success,
        "errors": [],
        "messages": [],
        "result": result,
        "result_info": {
            "page": page,
            "per_page": 50,
            "count": len(result) if isinstance(result, list) else 1,
            "total_pages": total_pages,
        },
    }


class FakeCloudflare:
    """
    Routes httpx.MockTransport requests to canned responses.

    Each route holds a queue; the last entry repeats once the queue drains.
    Entries may be an envelope dict, an int status code, an exception to
    raise, or a callable taking the request.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, path, *responses):
        self.routes[path] = list(responses)
        return self

    def calls_to(self, path):
        return [params for called, params in self.calls if called == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.split(f"/accounts/{ACCOUNT_ID}/", 1)[1]
        self.calls.append((path, dict(request.url.params)))

        queue = self.routes.get(path)
        if not queue:
            return httpx.Response(404, json=envelope(None, success=False))
        item = queue.pop(0) if len(queue) > 1 else queue[0]

        if callable(item):
            return item(request)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, int):
            return httpx.Response(item, json=envelope(None, success=False))
        return httpx.Response(200, json=item)


class SleepRecorder:
    """Zero-delay replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def logger():
    """Create logger for tests."""
    return setup_logger("test", level="DEBUG")


@pytest.fixture
def config():
    """Exporter configuration with every collector disabled."""
    return ExporterConfig(
        cloudflare={"api_key": "test-token", "account_id": ACCOUNT_ID},
        retry={"max_attempts": 3, "base_delay": 0.01, "max_delay": 0.1},
        scrape={"timeout_seconds": 5},
    )


@pytest.fixture
def registry():
    return MetricRegistry()


@pytest.fixture
def fake():
    return FakeCloudflare()


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def client(config, registry, fake):
    """CloudflareClient wired to the fake upstream."""
    return CloudflareClient(
        config.cloudflare,
        registry,
        transport=httpx.MockTransport(fake.handler),
    )


@pytest.fixture
def collector_kwargs(client, logger, sleep):
    """Constructor arguments shared by every collector."""
    return dict(
        client=client,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.01, max_delay=0.1, jitter=False),
        logger=logger,
        sleep=sleep,
    )


@pytest.fixture
def make_context(registry):
    """Build a ScrapeContext; call it inside the running event loop."""
    def factory(timeout=5.0):
        return ScrapeContext.start(ACCOUNT_ID, registry, timeout)
    return factory
