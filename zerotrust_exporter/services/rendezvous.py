"""One-shot handoff of a value from a producing task to a consuming task."""

import asyncio
from typing import Generic, Optional, TypeVar

from ..errors import RendezvousError


T = TypeVar('T')

_CLOSED = object()


class Rendezvous(Generic[T]):
    """
    Single-producer/single-consumer future with a "closed without value" state.

    The producer calls exactly one of ``deliver`` or ``close``; the consumer
    calls ``receive`` exactly once and gets the value, or None when the
    producer closed the rendezvous. A second write or read raises
    RendezvousError.
    """

    def __init__(self, name: str = "rendezvous"):
        self.name = name
        self._future: Optional[asyncio.Future] = None
        self._written = False
        self._read = False

    def _get_future(self) -> asyncio.Future:
        # Bound lazily so the rendezvous can be built outside a running loop
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def written(self) -> bool:
        return self._written

    def deliver(self, value: T) -> None:
        """
        Hand the value to the consumer.

        Raises:
            RendezvousError: If already delivered or closed
        """
        self._write(value)

    def close(self) -> None:
        """
        Signal that no value will be delivered.

        Raises:
            RendezvousError: If already delivered or closed
        """
        self._write(_CLOSED)

    def _write(self, value) -> None:
        if self._written:
            raise RendezvousError(f"{self.name}: already written")
        self._written = True
        self._get_future().set_result(value)

    async def receive(self) -> Optional[T]:
        """
        Wait for the producer.

        Returns:
            The delivered value, or None if the rendezvous was closed

        Raises:
            RendezvousError: If already read
        """
        if self._read:
            raise RendezvousError(f"{self.name}: already read")
        self._read = True
        value = await asyncio.shield(self._get_future())
        return None if value is _CLOSED else value
