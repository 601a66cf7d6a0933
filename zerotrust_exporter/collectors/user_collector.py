"""Access user collector, correlated with the device snapshot."""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..errors import UpstreamDecodeError
from ..state import ScrapeContext
from ..utils.metrics import CollectorResult, MetricSample
from .base import BaseCollector, safe_collect
from .device_collector import DeviceStatus


USERS_UP = "zerotrust_users_up"


def _flag(value: Optional[bool]) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class AccessUser:
    """Access user with seat assignments."""

    id: str
    email: str = ""
    gateway_seat: Optional[bool] = None
    access_seat: Optional[bool] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "AccessUser":
        if not isinstance(data, dict) or not data.get("id"):
            raise UpstreamDecodeError(f"User entry without id: {data!r}")
        return cls(
            id=str(data["id"]),
            email=data.get("email") or "",
            gateway_seat=data.get("gateway_seat"),
            access_seat=data.get("access_seat"),
        )

    def to_sample(self) -> MetricSample:
        return MetricSample.from_pairs(
            USERS_UP,
            [
                ("gateway_seat", _flag(self.gateway_seat)),
                ("access_seat", _flag(self.access_seat)),
                ("user_id", self.id),
                ("user_email", self.email),
            ],
            1,
        )


def match_device(user: AccessUser, devices: Mapping[str, DeviceStatus]) -> Optional[DeviceStatus]:
    """
    First device in snapshot order owned by the user's email, or None.

    Users with an empty email never match.
    """
    if not user.email:
        return None
    for device in devices.values():
        if device.person_email == user.email:
            return device
    return None


class UserCollector(BaseCollector):
    """Collector for access users that own a connected device."""

    name = "users"
    metric_families = (USERS_UP,)

    @safe_collect
    async def collect(self, context: ScrapeContext) -> CollectorResult:
        """
        Fetch users while the device snapshot is pending, then publish matches.

        A closed rendezvous (devices disabled or failed) is treated as an
        empty snapshot, so no user matches but the run still succeeds.

        Returns:
            CollectorResult: Payload is the list of matched user ids
        """
        listing = asyncio.ensure_future(self._list_all(context, "users"))
        try:
            devices = await context.device_snapshot.receive()
        except BaseException:
            listing.cancel()
            raise
        if devices is None:
            self.logger.info("No device snapshot for this scrape, continuing with none")
            devices = {}

        items, attempts = await listing
        users = [AccessUser.from_payload(item) for item in items]

        samples: List[MetricSample] = []
        matched: List[str] = []
        for user in users:
            if match_device(user, devices) is None:
                continue
            samples.append(user.to_sample())
            matched.append(user.id)

        published = self._publish(context, samples)
        self.logger.debug(f"Fetched {len(users)} user(s), {len(matched)} with a connected device")
        return CollectorResult.success(
            self.name,
            payload=matched,
            samples_published=published,
            attempts=attempts
        )
