"""Zero Trust device fleet status collector."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List

from ..errors import UpstreamDecodeError
from ..services.cloudflare_client import TimeWindow
from ..state import ScrapeContext
from ..utils.metrics import CollectorResult, MetricSample
from .base import BaseCollector, safe_collect


DEVICES_STATUS = "zerotrust_devices_status"

# Devices seen within this window count as recently seen
SEEN_WINDOW = timedelta(minutes=3)


@dataclass(frozen=True)
class DeviceStatus:
    """Fleet status of one device."""

    device_id: str
    device_name: str = ""
    status: str = ""
    platform: str = ""
    version: str = ""
    person_email: str = ""
    colo: str = ""  # Point of presence
    mode: str = ""
    timestamp: str = ""

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "DeviceStatus":
        if not isinstance(data, dict) or not data.get("device_id"):
            raise UpstreamDecodeError(f"Device entry without device_id: {data!r}")
        return cls(
            device_id=str(data["device_id"]),
            device_name=data.get("device_name") or "",
            status=data.get("status") or "",
            platform=data.get("platform") or "",
            version=data.get("version") or "",
            person_email=data.get("person_email") or "",
            colo=data.get("colo") or "",
            mode=data.get("mode") or "",
            timestamp=data.get("timestamp") or "",
        )

    @property
    def connected(self) -> bool:
        return self.status == "connected"

    def to_sample(self) -> MetricSample:
        return MetricSample.from_pairs(
            DEVICES_STATUS,
            [
                ("device_id", self.device_id),
                ("device_name", self.device_name),
                ("user_email", self.person_email),
                ("colo", self.colo),
                ("mode", self.mode),
                ("platform", self.platform),
                ("version", self.version),
            ],
            1,
        )


class DeviceCollector(BaseCollector):
    """Collector for recently seen, connected devices."""

    name = "devices"
    metric_families = (DEVICES_STATUS,)
    # Users wait on this snapshot
    early_cutoff = True

    @safe_collect
    async def collect(self, context: ScrapeContext) -> CollectorResult:
        """
        Fetch the device fleet and publish one gauge per connected device.

        Returns:
            CollectorResult: Payload is {device_id: DeviceStatus} of connected
                devices, in upstream order
        """
        window = TimeWindow.last(SEEN_WINDOW)
        items, attempts = await self._list_all(
            context,
            "devices",
            params={"sort_by": "device_id", "status": "connected", "source": "last_seen"},
            window=window,
        )

        devices: Dict[str, DeviceStatus] = {}
        for item in items:
            device = DeviceStatus.from_payload(item)
            devices[device.device_id] = device

        connected = {device_id: d for device_id, d in devices.items() if d.connected}
        samples: List[MetricSample] = [device.to_sample() for device in connected.values()]

        published = self._publish(context, samples)
        self.logger.debug(
            f"Fetched {len(devices)} device(s), {len(connected)} connected"
        )
        return CollectorResult.success(
            self.name,
            payload=connected,
            samples_published=published,
            attempts=attempts
        )
