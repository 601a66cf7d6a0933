"""Tests for TunnelCollector."""

import pytest

from zerotrust_exporter.collectors.tunnel_collector import TUNNELS_UP, TunnelCollector
from zerotrust_exporter.services.metric_registry import API_ERRORS

from conftest import envelope


TUNNELS_PATH = "cfd_tunnel"


@pytest.mark.asyncio
async def test_healthy_is_one_others_zero(collector_kwargs, make_context, fake, registry):
    fake.add(TUNNELS_PATH, envelope([
        {"id": "t1", "name": "edge-1", "status": "healthy"},
        {"id": "t2", "name": "edge-2", "status": "degraded"},
        {"id": "t3", "name": "edge-3", "status": "down"},
    ]))
    collector = TunnelCollector(**collector_kwargs)

    result = await collector.collect(make_context())

    assert result.ok
    assert result.samples_published == 3
    assert registry.value(TUNNELS_UP, {"id": "t1", "name": "edge-1"}) == 1
    assert registry.value(TUNNELS_UP, {"id": "t2", "name": "edge-2"}) == 0
    assert registry.value(TUNNELS_UP, {"id": "t3", "name": "edge-3"}) == 0


@pytest.mark.asyncio
async def test_requests_non_deleted_tunnels(collector_kwargs, make_context, fake):
    fake.add(TUNNELS_PATH, envelope([]))
    collector = TunnelCollector(**collector_kwargs)

    await collector.collect(make_context())

    assert fake.calls_to(TUNNELS_PATH)[0]["is_deleted"] == "false"


@pytest.mark.asyncio
async def test_value_updates_between_scrapes(collector_kwargs, make_context, fake, registry):
    fake.add(
        TUNNELS_PATH,
        envelope([{"id": "t1", "name": "edge-1", "status": "healthy"}]),
        envelope([{"id": "t1", "name": "edge-1", "status": "down"}]),
    )
    collector = TunnelCollector(**collector_kwargs)

    await collector.collect(make_context())
    await collector.collect(make_context())

    assert registry.value(TUNNELS_UP, {"id": "t1", "name": "edge-1"}) == 0
    assert len(registry.snapshot()) == 1


@pytest.mark.asyncio
async def test_evict_stale_drops_deleted_tunnel(collector_kwargs, make_context, fake, registry):
    fake.add(
        TUNNELS_PATH,
        envelope([
            {"id": "t1", "name": "edge-1", "status": "healthy"},
            {"id": "t2", "name": "edge-2", "status": "healthy"},
        ]),
        envelope([{"id": "t2", "name": "edge-2", "status": "healthy"}]),
    )
    collector = TunnelCollector(**dict(collector_kwargs, evict_stale=True))

    await collector.collect(make_context())
    await collector.collect(make_context())

    assert registry.value(TUNNELS_UP, {"id": "t1", "name": "edge-1"}) is None
    assert registry.value(TUNNELS_UP, {"id": "t2", "name": "edge-2"}) == 1


@pytest.mark.asyncio
async def test_failure_keeps_previous_series(collector_kwargs, make_context, fake, registry):
    fake.add(
        TUNNELS_PATH,
        envelope([{"id": "t1", "name": "edge-1", "status": "healthy"}]),
        403,
    )
    collector = TunnelCollector(**dict(collector_kwargs, evict_stale=True))

    await collector.collect(make_context())
    result = await collector.collect(make_context())

    assert not result.ok
    assert registry.value(TUNNELS_UP, {"id": "t1", "name": "edge-1"}) == 1
    assert registry.value(API_ERRORS, {"collector": "tunnels"}) == 1
