"""Stable public API for building front ends on top of anywake.

This module is the supported integration surface for third-party callers
(widgets, companion apps, scripts). Avoid importing from private/internal
modules unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from dataclasses import dataclass

from anywake.core.config import BLESettings, Settings, load_settings
from anywake.core.errors import (
    AnywakeError,
    CapabilityFailedError,
    ConfigError,
    DeltaValidationError,
    DeviceSelectionError,
    MessageFormatError,
    NotFoundError,
    StorageError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    UnreachableError,
    WakeTimeoutError,
)
from anywake.core.model import (
    Device,
    DeviceAddress,
    DeviceStatus,
    FieldChange,
    RegistryDelta,
    Stamp,
    WakeOutcome,
    WakeRequest,
    WakeResult,
)
from anywake.core.service import AnywakeNode
from anywake.core.storage import DeviceStore, MemoryDeviceStore, StoredDevice, YamlDeviceStore
from anywake.transports.base import PeerLink, PeerState, StatusProbe, WakeTransport
from anywake.transports.ble_gatt import BLEGATTPeerLink
from anywake.transports.loopback import LoopbackWire

__all__ = [
    "AnywakeError",
    "CapabilityFailedError",
    "ConfigError",
    "DeltaValidationError",
    "DeviceSelectionError",
    "MessageFormatError",
    "NotFoundError",
    "StorageError",
    "TransportConnectError",
    "TransportError",
    "TransportSendError",
    "UnreachableError",
    "WakeTimeoutError",
    "Device",
    "DeviceAddress",
    "DeviceStatus",
    "FieldChange",
    "RegistryDelta",
    "Stamp",
    "WakeOutcome",
    "WakeRequest",
    "WakeResult",
    "BLESettings",
    "Settings",
    "load_settings",
    "DeviceStore",
    "MemoryDeviceStore",
    "StoredDevice",
    "YamlDeviceStore",
    "PeerLink",
    "PeerState",
    "StatusProbe",
    "WakeTransport",
    "BLEGATTPeerLink",
    "LoopbackWire",
    "SnapshotEntry",
    "Client",
]


@dataclass(frozen=True)
class SnapshotEntry:
    """What a widget needs to render one pinned device."""

    id: str
    name: str
    is_pinned: bool


class Client:
    """Public client for a single anywake node.

    A `Client` wraps the device registry, snapshot provider and wake
    dispatcher of one process behind the two calls every front end needs,
    `request_snapshot` and `request_wake`, plus device management.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: DeviceStore | None = None,
        wake_transport: WakeTransport | None = None,
        probe: StatusProbe | None = None,
    ) -> None:
        self._node = AnywakeNode(
            settings or load_settings(),
            store=store,
            wake_transport=wake_transport,
            probe=probe,
        )

    async def __aenter__(self) -> Client:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def node(self) -> AnywakeNode:
        return self._node

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return self._node.runtime_warnings

    def add_link(self, link: PeerLink) -> None:
        self._node.add_link(link)

    async def start(self, *, monitor_status: bool = False) -> None:
        await self._node.start(monitor_status=monitor_status)

    async def close(self) -> None:
        await self._node.close()

    def request_snapshot(self) -> list[SnapshotEntry]:
        return [
            SnapshotEntry(id=device.id, name=device.name, is_pinned=device.is_pinned)
            for device in self._node.snapshot()
        ]

    async def request_wake(self, device_id: str) -> WakeResult:
        return await self._node.wake(device_id)

    async def retry_wake(self, request_id: str) -> WakeResult:
        return await self._node.retry_wake(request_id)

    def request_devices(self) -> list[str]:
        """Ask reachable peers for any device changes this node has missed."""
        return self._node.request_devices()

    def list_devices(self) -> list[Device]:
        return self._node.list_devices()

    def find_device(self, hint: str) -> Device:
        return self._node.find_device(hint)

    def add_device(self, name: str, mac: str, *, host: str | None = None) -> Device:
        return self._node.add_device(name, mac, host)

    def remove_device(self, device_id: str) -> None:
        self._node.remove_device(device_id)

    def rename_device(self, device_id: str, name: str) -> Device:
        return self._node.rename_device(device_id, name)

    def set_address(self, device_id: str, mac: str, *, host: str | None = None) -> Device:
        return self._node.set_address(device_id, mac, host)

    def pin(self, device_id: str) -> Device:
        return self._node.set_pinned(device_id, True)

    def unpin(self, device_id: str) -> Device:
        return self._node.set_pinned(device_id, False)

    async def check_status(self, device_id: str | None = None) -> dict[str, DeviceStatus]:
        return await self._node.check_status(device_id)
