"""Service layer: one process's registry, channel, dispatcher and sync wired together."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from collections.abc import Callable

from anywake.core.config import Settings
from anywake.core.device_match import resolve_device
from anywake.core.dispatcher import WakeDispatcher
from anywake.core.model import Device, DeviceAddress, DeviceStatus, WakeResult
from anywake.core.registry import DeviceRegistry
from anywake.core.snapshot import SnapshotProvider, SnapshotRefresher
from anywake.core.status import StatusChecker
from anywake.core.storage import DeviceStore, YamlDeviceStore
from anywake.core.sync import SyncCoordinator
from anywake.transports.base import PeerLink, StatusProbe, WakeTransport
from anywake.transports.channel import PeerChannel
from anywake.transports.command import CommandWakeTransport, PingProbe

LOGGER = logging.getLogger(__name__)


class AnywakeNode:
    def __init__(
        self,
        settings: Settings,
        *,
        store: DeviceStore | None = None,
        wake_transport: WakeTransport | None = None,
        probe: StatusProbe | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        if settings.wake_capable:
            wake_transport = wake_transport or CommandWakeTransport(settings.wake_command)
            probe = probe or PingProbe()
        else:
            wake_transport = None
        self.runtime_warnings = _runtime_warnings(settings, wake_transport)

        self.registry = DeviceRegistry(
            store or YamlDeviceStore(settings.store_path),
            node_id=settings.node_id,
            clock=clock,
        )
        self.channel = PeerChannel(settings.node_id)
        self.dispatcher = WakeDispatcher(
            self.registry,
            self.channel,
            wake_transport=wake_transport,
            wake_peer=settings.wake_peer,
            timeout_s=settings.wake_timeout_s,
            retention_s=settings.dedupe_retention_s,
        )
        self.snapshots = SnapshotProvider(self.registry, limit=settings.snapshot_limit)
        self.sync = SyncCoordinator(self.registry, self.channel)
        self.status = StatusChecker(self.registry, probe) if probe is not None else None
        self.channel.on_receive(self.sync.handle_message)
        self.channel.on_receive(self.dispatcher.handle_message)
        self._background: list[asyncio.Task[None]] = []

    async def __aenter__(self) -> AnywakeNode:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def add_link(self, link: PeerLink) -> None:
        self.channel.attach(link)

    async def start(self, *, monitor_status: bool = False) -> None:
        await self.channel.connect()
        if monitor_status and self.status is not None:
            self._spawn(self.status.run(self.settings.status_interval_s))

    def watch_snapshots(self, consumer: Callable[[list[Device]], None]) -> SnapshotRefresher:
        """Feed `consumer` on the configured interval and after every change."""
        refresher = SnapshotRefresher(self.snapshots, consumer, interval_s=self.settings.snapshot_interval_s)
        self._spawn(refresher.run())
        return refresher

    async def close(self) -> None:
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        await self.dispatcher.close()
        await self.channel.close()

    def list_devices(self) -> list[Device]:
        return self.registry.all()

    def find_device(self, hint: str) -> Device:
        return resolve_device(self.registry.all(), hint)

    def add_device(self, name: str, mac: str, host: str | None = None) -> Device:
        delta = self.registry.add(name, DeviceAddress.from_value({"mac": mac, "host": host}))
        return self.registry.require(delta.device_ids()[0])

    def remove_device(self, device_id: str) -> None:
        self.registry.remove(device_id)

    def rename_device(self, device_id: str, name: str) -> Device:
        self.registry.mutate(device_id, "name", name)
        return self.registry.require(device_id)

    def set_address(self, device_id: str, mac: str, host: str | None = None) -> Device:
        self.registry.mutate(device_id, "address", {"mac": mac, "host": host})
        return self.registry.require(device_id)

    def set_pinned(self, device_id: str, pinned: bool) -> Device:
        self.registry.mutate(device_id, "is_pinned", pinned)
        return self.registry.require(device_id)

    def snapshot(self) -> list[Device]:
        return self.snapshots.snapshot()

    async def wake(self, device_id: str) -> WakeResult:
        return await self.dispatcher.dispatch(device_id)

    async def retry_wake(self, request_id: str) -> WakeResult:
        return await self.dispatcher.retry(request_id)

    def request_devices(self) -> list[str]:
        return self.sync.request_resync()

    async def check_status(self, device_id: str | None = None) -> dict[str, DeviceStatus]:
        if self.status is None:
            return {}
        if device_id is not None:
            return {device_id: await self.status.check(device_id)}
        return await self.status.check_all()

    def _spawn(self, coro) -> None:
        self._background.append(asyncio.get_running_loop().create_task(coro))


def _runtime_warnings(settings: Settings, wake_transport: WakeTransport | None) -> tuple[str, ...]:
    warnings: list[str] = []
    if isinstance(wake_transport, CommandWakeTransport) and shutil.which(wake_transport.command[0]) is None:
        warnings.append(
            f"Wake command '{wake_transport.command[0]}' not found on PATH; local wake attempts will fail."
        )
    if not settings.wake_capable and settings.wake_peer is None:
        LOGGER.debug("Not wake capable and no wake_peer set; requests go to every reachable peer")
    return tuple(warnings)
