"""Cloudflare tunnel health collector."""

from dataclasses import dataclass
from typing import Any, Dict

from ..errors import UpstreamDecodeError
from ..state import ScrapeContext
from ..utils.metrics import CollectorResult, MetricSample
from .base import BaseCollector, safe_collect


TUNNELS_UP = "zerotrust_tunnels_up"


@dataclass(frozen=True)
class Tunnel:
    id: str
    name: str = ""
    status: str = ""

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Tunnel":
        if not isinstance(data, dict) or not data.get("id"):
            raise UpstreamDecodeError(f"Tunnel entry without id: {data!r}")
        return cls(id=str(data["id"]), name=data.get("name") or "", status=data.get("status") or "")

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    def to_sample(self) -> MetricSample:
        return MetricSample.from_pairs(
            TUNNELS_UP,
            [("id", self.id), ("name", self.name)],
            1 if self.healthy else 0,
        )


class TunnelCollector(BaseCollector):
    """Collector for non-deleted tunnels."""

    name = "tunnels"
    metric_families = (TUNNELS_UP,)

    @safe_collect
    async def collect(self, context: ScrapeContext) -> CollectorResult:
        items, attempts = await self._list_all(context, "tunnels", params={"is_deleted": "false"})
        tunnels = {}
        for item in items:
            tunnel = Tunnel.from_payload(item)
            tunnels[tunnel.id] = tunnel

        published = self._publish(context, [t.to_sample() for t in tunnels.values()])
        self.logger.debug(f"Fetched {len(tunnels)} tunnel(s)")
        return CollectorResult.success(
            self.name,
            payload=tunnels,
            samples_published=published,
            attempts=attempts
        )
