from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from anywake.core.config import Settings
from anywake.core.model import DeviceAddress
from anywake.core.service import AnywakeNode
from anywake.core.storage import MemoryDeviceStore


class FakeWake:
    def __init__(self, *answers: bool, delay: float = 0.0) -> None:
        self.answers = list(answers)
        self.delay = delay
        self.calls: list[DeviceAddress] = []

    async def attempt_wake(self, address: DeviceAddress) -> bool:
        self.calls.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.answers:
            return self.answers.pop(0)
        return True


class FakeProbe:
    def __init__(self, answers: dict[str, bool | None] | None = None) -> None:
        self.answers = answers or {}
        self.calls: list[DeviceAddress] = []

    async def probe(self, address: DeviceAddress) -> bool | None:
        self.calls.append(address)
        return self.answers.get(address.host or "")


class Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_settings(node_id: str, **overrides) -> Settings:
    return Settings(node_id=node_id, store_path=Path("/unused/devices.yaml"), **overrides)


def make_node(node_id: str, *, wake: FakeWake | None = None, **overrides) -> AnywakeNode:
    if wake is None:
        overrides.setdefault("wake_capable", False)
    return AnywakeNode(
        make_settings(node_id, **overrides),
        store=MemoryDeviceStore(),
        wake_transport=wake,
        probe=FakeProbe(),
    )


@pytest.fixture(autouse=True)
def isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
