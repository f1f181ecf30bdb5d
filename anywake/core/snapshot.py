"""Bounded, ordered view of pinned devices for consumers such as widgets."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from anywake.core.model import Device, RegistryDelta, Stamp
from anywake.core.registry import DeviceRegistry

DEFAULT_SNAPSHOT_LIMIT = 3
_UNSTAMPED = Stamp(0.0, "")


class SnapshotProvider:
    def __init__(self, registry: DeviceRegistry, *, limit: int = DEFAULT_SNAPSHOT_LIMIT) -> None:
        self.registry = registry
        self.limit = limit

    def snapshot(self) -> list[Device]:
        """First `limit` pinned devices, oldest pin first.

        Devices pinned at the same instant keep their insertion order.
        """
        pinned = [device for device in self.registry.all() if device.is_pinned]
        pinned.sort(key=lambda device: (device.pinned_at or _UNSTAMPED, device.sequence))
        return pinned[: self.limit]


class SnapshotRefresher:
    """Push a fresh snapshot to a consumer on a fixed interval and after every change."""

    def __init__(
        self,
        provider: SnapshotProvider,
        consumer: Callable[[list[Device]], None],
        *,
        interval_s: float,
    ) -> None:
        self.provider = provider
        self.consumer = consumer
        self.interval_s = interval_s
        provider.registry.add_listener(self._on_change)

    def refresh(self) -> list[Device]:
        snapshot = self.provider.snapshot()
        self.consumer(snapshot)
        return snapshot

    def _on_change(self, _delta: RegistryDelta, _source: str | None) -> None:
        self.refresh()

    async def run(self) -> None:
        while True:
            self.refresh()
            await asyncio.sleep(self.interval_s)
