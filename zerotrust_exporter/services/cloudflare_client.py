"""Thin async client for the Cloudflare v4 API."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..config.models import CloudflareConfig
from ..errors import UpstreamDecodeError, UpstreamStatusError, UpstreamTransportError
from .metric_registry import MetricRegistry


# Resource kind -> account-relative path
RESOURCE_PATHS = {
    "devices": "dex/fleet-status/devices",
    "users": "access/users",
    "tunnels": "cfd_tunnel",
    "dex_tests": "dex/tests",
    "traceroute_tests": "dex/traceroute-tests",
}

# List results wrapped in an object, e.g. {"result": {"tests": [...]}}
NESTED_RESULT_KEYS = {"dex_tests": "tests"}


@dataclass(frozen=True)
class PageInfo:
    """Pagination block of a list response."""

    page: int = 1
    per_page: int = 0
    count: int = 0
    total_count: int = 0
    total_pages: int = 1

    @classmethod
    def from_payload(cls, data: Optional[Dict[str, Any]]) -> "PageInfo":
        if not data:
            return cls()
        return cls(
            page=int(data.get("page") or 1),
            per_page=int(data.get("per_page") or 0),
            count=int(data.get("count") or 0),
            total_count=int(data.get("total_count") or 0),
            total_pages=int(data.get("total_pages") or 1),
        )


@dataclass(frozen=True)
class TimeWindow:
    """Time range sent as query parameters."""

    start: datetime
    end: datetime
    start_param: str = "time_start"
    end_param: str = "time_end"

    @classmethod
    def last(
        cls,
        delta: timedelta,
        start_param: str = "time_start",
        end_param: str = "time_end",
        now: Optional[datetime] = None
    ) -> "TimeWindow":
        end = (now or datetime.now(timezone.utc)).replace(microsecond=0)
        return cls(start=end - delta, end=end, start_param=start_param, end_param=end_param)

    def to_params(self) -> Dict[str, str]:
        return {
            self.start_param: self.start.isoformat().replace("+00:00", "Z"),
            self.end_param: self.end.isoformat().replace("+00:00", "Z"),
        }


class CloudflareClient:
    """
    One authenticated HTTP call per invocation.

    Retry is not done here; callers wrap calls in a RetryHandler.
    """

    def __init__(
        self,
        config: CloudflareConfig,
        metrics: Optional[MetricRegistry] = None,
        logger: Optional[logging.Logger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize Cloudflare client.

        Args:
            config: API access configuration
            metrics: Registry receiving the API call counter
            logger: Optional logger instance
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        self.metrics = metrics
        self.logger = logger or logging.getLogger(__name__)
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=config.timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def list(
        self,
        kind: str,
        account_id: str,
        params: Optional[Dict[str, Any]] = None,
        window: Optional[TimeWindow] = None
    ) -> Tuple[List[Dict[str, Any]], PageInfo]:
        """
        Fetch one page of a resource collection.

        Returns:
            tuple: (items, page info)

        Raises:
            UpstreamError: On transport, status or decode failure
        """
        envelope = await self._request(kind, self._path(kind, account_id), params, window)
        result = envelope.get("result")
        if result is None:
            items: List[Dict[str, Any]] = []
        elif isinstance(result, list):
            items = result
        elif isinstance(result, dict) and isinstance(result.get(NESTED_RESULT_KEYS.get(kind, kind)), list):
            items = result[NESTED_RESULT_KEYS.get(kind, kind)]
        else:
            raise UpstreamDecodeError(f"Unexpected result shape for {kind}: {type(result).__name__}")
        return items, PageInfo.from_payload(envelope.get("result_info"))

    async def get(
        self,
        kind: str,
        account_id: str,
        resource_id: str,
        window: Optional[TimeWindow] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Fetch a single resource.

        Raises:
            UpstreamError: On transport, status or decode failure
        """
        path = f"{self._path(kind, account_id)}/{resource_id}"
        envelope = await self._request(kind, path, params, window)
        result = envelope.get("result")
        if not isinstance(result, dict):
            raise UpstreamDecodeError(f"Unexpected result shape for {kind}/{resource_id}")
        return result

    def _path(self, kind: str, account_id: str) -> str:
        try:
            return f"/accounts/{account_id}/{RESOURCE_PATHS[kind]}"
        except KeyError:
            raise ValueError(f"Unknown resource kind: {kind}") from None

    async def _request(
        self,
        kind: str,
        path: str,
        params: Optional[Dict[str, Any]],
        window: Optional[TimeWindow]
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = dict(params or {})
        if window is not None:
            query.update(window.to_params())

        if self.metrics is not None:
            self.metrics.record_api_call(kind)

        try:
            response = await self._http.get(path, params=query)
        except httpx.TransportError as e:
            raise UpstreamTransportError(f"{kind}: {e!r}") from e

        if response.status_code < 200 or response.status_code >= 300:
            raise UpstreamStatusError(response.status_code, str(response.url), response.text)

        try:
            envelope = response.json()
        except ValueError as e:
            raise UpstreamDecodeError(f"{kind}: invalid JSON: {e}") from e

        if not isinstance(envelope, dict):
            raise UpstreamDecodeError(f"{kind}: response is not an object")
        if envelope.get("success") is False:
            raise UpstreamDecodeError(
                f"{kind}: API reported failure: {envelope.get('errors') or envelope.get('messages')}"
            )
        return envelope
