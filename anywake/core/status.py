"""Online/offline status checks, run by the node that has network access."""

from __future__ import annotations

import asyncio
import logging

from anywake.core.model import DeviceStatus
from anywake.core.registry import DeviceRegistry
from anywake.transports.base import StatusProbe

LOGGER = logging.getLogger(__name__)


def _status_for(answer: bool | None) -> DeviceStatus:
    if answer is None:
        return DeviceStatus.UNKNOWN
    return DeviceStatus.ONLINE if answer else DeviceStatus.OFFLINE


class StatusChecker:
    def __init__(self, registry: DeviceRegistry, probe: StatusProbe) -> None:
        self.registry = registry
        self.probe = probe

    async def check(self, device_id: str) -> DeviceStatus:
        device = self.registry.require(device_id)
        status = _status_for(await self.probe.probe(device.address))
        # the device may have been deleted while the probe ran
        if self.registry.get(device_id) is not None:
            self.registry.record_status(device_id, status)
        return status

    async def check_all(self) -> dict[str, DeviceStatus]:
        devices = self.registry.all()
        answers = await asyncio.gather(*(self.probe.probe(device.address) for device in devices))
        statuses: dict[str, DeviceStatus] = {}
        for device, answer in zip(devices, answers):
            status = _status_for(answer)
            statuses[device.id] = status
            if self.registry.get(device.id) is not None:
                self.registry.record_status(device.id, status)
        LOGGER.debug("Status check: %s", {k: v.value for k, v in statuses.items()})
        return statuses

    async def run(self, interval_s: float) -> None:
        while True:
            await self.check_all()
            await asyncio.sleep(interval_s)
