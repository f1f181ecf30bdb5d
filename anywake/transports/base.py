"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Protocol

from anywake.core.model import DeviceAddress


class PeerState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    REACHABLE = "reachable"


class PeerLink(Protocol):
    """Byte transport to a single peer."""

    peer_id: str

    def bind(self, on_data: Callable[[bytes], None], on_state: Callable[[PeerState], None]) -> None:
        """Register callbacks for inbound bytes and reachability changes."""

    def write(self, data: bytes) -> None:
        """Queue bytes for the peer in order; must not suspend."""

    async def connect(self) -> None:
        """Open the session; reachability is reported through on_state."""

    async def close(self) -> None:
        """Tear the session down."""


class WakeTransport(Protocol):
    async def attempt_wake(self, address: DeviceAddress) -> bool:
        """Send a power-on signal; True when the signal went out."""


class StatusProbe(Protocol):
    async def probe(self, address: DeviceAddress) -> bool | None:
        """Return True if the device answered, False if not, None if unknown."""
