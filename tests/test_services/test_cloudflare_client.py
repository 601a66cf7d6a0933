"""Tests for CloudflareClient."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from zerotrust_exporter.errors import UpstreamDecodeError, UpstreamStatusError, UpstreamTransportError
from zerotrust_exporter.services.cloudflare_client import CloudflareClient, PageInfo, TimeWindow
from zerotrust_exporter.services.metric_registry import API_CALLS

from conftest import ACCOUNT_ID, envelope


@pytest.mark.asyncio
async def test_list_returns_items_and_page_info(client, fake):
    fake.add("cfd_tunnel", envelope([{"id": "t1"}, {"id": "t2"}], page=1, total_pages=3))

    items, info = await client.list("tunnels", ACCOUNT_ID, {"is_deleted": "false"})

    assert [i["id"] for i in items] == ["t1", "t2"]
    assert info.total_pages == 3
    assert fake.calls_to("cfd_tunnel") == [{"is_deleted": "false"}]


@pytest.mark.asyncio
async def test_sends_bearer_token(client, fake):
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=envelope([]))

    fake.add("access/users", handler)
    await client.list("users", ACCOUNT_ID)

    assert seen["auth"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_nested_dex_test_listing(client, fake):
    fake.add("dex/tests", envelope({"tests": [{"id": "x"}]}))

    items, _ = await client.list("dex_tests", ACCOUNT_ID)

    assert items == [{"id": "x"}]


@pytest.mark.asyncio
async def test_get_single_resource(client, fake):
    fake.add("dex/traceroute-tests/t9", envelope({"kind": "traceroute", "name": "probe"}))

    result = await client.get("traceroute_tests", ACCOUNT_ID, "t9", params={"interval": "minute"})

    assert result["name"] == "probe"
    assert fake.calls_to("dex/traceroute-tests/t9") == [{"interval": "minute"}]


@pytest.mark.asyncio
async def test_time_window_params(client, fake):
    fake.add("dex/fleet-status/devices", envelope([]))
    now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    window = TimeWindow.last(timedelta(minutes=3), now=now)

    await client.list("devices", ACCOUNT_ID, window=window)

    params = fake.calls_to("dex/fleet-status/devices")[0]
    assert params["time_start"] == "2026-01-02T03:01:05Z"
    assert params["time_end"] == "2026-01-02T03:04:05Z"


@pytest.mark.asyncio
async def test_retryable_status_error(client, fake):
    fake.add("cfd_tunnel", 503)

    with pytest.raises(UpstreamStatusError) as exc_info:
        await client.list("tunnels", ACCOUNT_ID)

    assert exc_info.value.status_code == 503
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_terminal_status_error(client, fake):
    fake.add("cfd_tunnel", 403)

    with pytest.raises(UpstreamStatusError) as exc_info:
        await client.list("tunnels", ACCOUNT_ID)

    assert not exc_info.value.retryable


@pytest.mark.asyncio
async def test_transport_error_is_retryable(client, fake):
    fake.add("cfd_tunnel", httpx.ConnectError("refused"))

    with pytest.raises(UpstreamTransportError) as exc_info:
        await client.list("tunnels", ACCOUNT_ID)

    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_invalid_json_is_decode_error(client, fake):
    fake.add("cfd_tunnel", lambda request: httpx.Response(200, content=b"not json"))

    with pytest.raises(UpstreamDecodeError):
        await client.list("tunnels", ACCOUNT_ID)


@pytest.mark.asyncio
async def test_success_false_is_decode_error(client, fake):
    fake.add("cfd_tunnel", envelope([], success=False))

    with pytest.raises(UpstreamDecodeError):
        await client.list("tunnels", ACCOUNT_ID)


@pytest.mark.asyncio
async def test_unknown_kind_rejected(client):
    with pytest.raises(ValueError):
        await client.list("printers", ACCOUNT_ID)


@pytest.mark.asyncio
async def test_counts_api_calls(client, fake, registry):
    fake.add("cfd_tunnel", envelope([]))

    await client.list("tunnels", ACCOUNT_ID)
    await client.list("tunnels", ACCOUNT_ID)

    assert registry.value(API_CALLS, {"resource": "tunnels"}) == 2


@pytest.mark.asyncio
async def test_aclose_closes_http_client(config, fake):
    c = CloudflareClient(config.cloudflare, transport=httpx.MockTransport(fake.handler))
    fake.add("cfd_tunnel", envelope([]))
    await c.list("tunnels", ACCOUNT_ID)

    await c.aclose()

    assert c._http.is_closed


def test_page_info_defaults():
    assert PageInfo.from_payload(None).total_pages == 1
    assert PageInfo.from_payload({"page": 2, "total_pages": 4}).page == 2
