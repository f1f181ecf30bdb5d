from __future__ import annotations

import asyncio

from anywake.core.model import FieldChange, Stamp
from anywake.core.registry import DeviceRegistry
from anywake.core.snapshot import DEFAULT_SNAPSHOT_LIMIT, SnapshotProvider, SnapshotRefresher
from anywake.core.storage import MemoryDeviceStore

from conftest import Clock, make_node, settle


def _setup(count: int) -> tuple[DeviceRegistry, Clock]:
    clock = Clock(1.0)
    registry = DeviceRegistry(MemoryDeviceStore(), node_id="phone", clock=clock)
    for index in range(count):
        registry.add(f"Device {index}", f"AA:BB:CC:DD:EE:{index:02X}", device_id=f"d{index}")
    return registry, clock


def test_empty_registry_gives_empty_snapshot() -> None:
    registry, _ = _setup(0)
    assert SnapshotProvider(registry).snapshot() == []


def test_unpinned_devices_are_excluded() -> None:
    registry, _ = _setup(2)
    registry.mutate("d1", "is_pinned", True)

    assert [d.id for d in SnapshotProvider(registry).snapshot()] == ["d1"]


def test_snapshot_is_capped_and_ordered_by_pin_time() -> None:
    registry, clock = _setup(5)
    for minute, device_id in enumerate(["d3", "d0", "d4", "d1"], start=10):
        clock.now = float(minute)
        registry.mutate(device_id, "is_pinned", True)

    snapshot = SnapshotProvider(registry).snapshot()
    assert DEFAULT_SNAPSHOT_LIMIT == 3
    assert [d.id for d in snapshot] == ["d3", "d0", "d4"]
    assert all(d.is_pinned for d in snapshot)


def test_repinning_moves_device_to_the_back() -> None:
    registry, clock = _setup(3)
    for minute, device_id in enumerate(["d0", "d1", "d2"], start=10):
        clock.now = float(minute)
        registry.mutate(device_id, "is_pinned", True)

    clock.now = 20.0
    registry.mutate("d0", "is_pinned", False)
    clock.now = 21.0
    registry.mutate("d0", "is_pinned", True)

    assert [d.id for d in SnapshotProvider(registry).snapshot()] == ["d1", "d2", "d0"]


def test_equal_pin_times_keep_insertion_order() -> None:
    registry, _ = _setup(3)
    stamp = Stamp(50.0, "watch")
    registry.apply(
        [
            FieldChange("d2", "is_pinned", True, stamp),
            FieldChange("d0", "is_pinned", True, stamp),
            FieldChange("d1", "is_pinned", True, stamp),
        ],
        source="watch",
    )

    assert [d.id for d in SnapshotProvider(registry, limit=2).snapshot()] == ["d0", "d1"]


def test_refresher_pushes_after_changes() -> None:
    registry, _ = _setup(1)
    received: list[list[str]] = []
    refresher = SnapshotRefresher(
        SnapshotProvider(registry),
        lambda snapshot: received.append([d.id for d in snapshot]),
        interval_s=900,
    )

    assert refresher.refresh() == []
    registry.mutate("d0", "is_pinned", True)
    registry.mutate("d0", "name", "Renamed")

    assert received == [[], ["d0"], ["d0"]]


def test_node_feeds_snapshot_watchers() -> None:
    async def scenario() -> list[list[str]]:
        node = make_node("phone")
        seen: list[list[str]] = []
        async with node:
            node.watch_snapshots(lambda snapshot: seen.append([d.name for d in snapshot]))
            await settle()
            device = node.add_device("Desktop", "AA:BB:CC:DD:EE:FF")
            node.set_pinned(device.id, True)
        return seen

    assert asyncio.run(scenario()) == [[], [], ["Desktop"]]
