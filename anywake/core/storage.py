"""Durable device storage.

The registry persists each device together with the per-field stamps that
drive last-writer-wins reconciliation, so a restarted process can still tell
stale peer updates from fresh ones. Tombstoned devices are stored too.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml
from jsonschema import ValidationError

from anywake.core.errors import DeltaValidationError, StorageError
from anywake.core.model import DeviceAddress, DeviceStatus, Stamp
from anywake.core.schema import load_schema_validator, normalize_bool, read_yaml, validation_message

LOGGER = logging.getLogger(__name__)
_STORE_VERSION = 1


@dataclass(frozen=True)
class StoredDevice:
    id: str
    name: str
    address: DeviceAddress | None
    is_pinned: bool = False
    status: DeviceStatus = DeviceStatus.UNKNOWN
    deleted: bool = False
    stamps: dict[str, Stamp] = field(default_factory=dict)


class DeviceStore(Protocol):
    def load(self) -> list[StoredDevice]:
        """Return stored devices in insertion order."""

    def save(self, devices: list[StoredDevice]) -> None:
        """Replace the stored device list."""


class MemoryDeviceStore:
    """Store kept in process memory; used by tests and short-lived nodes."""

    def __init__(self, devices: list[StoredDevice] | None = None) -> None:
        self.devices: list[StoredDevice] = list(devices or [])
        self.save_count = 0

    def load(self) -> list[StoredDevice]:
        return list(self.devices)

    def save(self, devices: list[StoredDevice]) -> None:
        self.devices = list(devices)
        self.save_count += 1


class YamlDeviceStore:
    """Device list persisted as a YAML document, validated on load."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> list[StoredDevice]:
        if not self.path.exists():
            return []
        doc = read_yaml(self.path, StorageError)
        if doc is None:
            return []

        validator = load_schema_validator("store.schema.json")
        try:
            validator.validate(doc)
        except ValidationError as exc:
            raise StorageError(f"Store validation failed for {self.path}{validation_message(exc)}") from exc

        return [_device_from_doc(entry, self.path) for entry in doc["devices"]]

    def save(self, devices: list[StoredDevice]) -> None:
        doc = {
            "version": _STORE_VERSION,
            "devices": [_device_to_doc(device) for device in devices],
        }
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Could not write device store {self.path}: {exc}") from exc
        LOGGER.debug("Saved %d devices to %s", len(devices), self.path)


def _device_to_doc(device: StoredDevice) -> dict[str, Any]:
    return {
        "id": device.id,
        "name": device.name,
        "address": device.address.to_dict() if device.address is not None else None,
        "is_pinned": device.is_pinned,
        "status": device.status.value,
        "deleted": device.deleted,
        "stamps": {name: stamp.to_list() for name, stamp in device.stamps.items()},
    }


def _device_from_doc(entry: dict[str, Any], source: Path) -> StoredDevice:
    context = f"{source}:{entry['id']}"
    try:
        return StoredDevice(
            id=entry["id"],
            name=entry["name"],
            address=DeviceAddress.from_value(entry["address"]) if entry["address"] is not None else None,
            is_pinned=normalize_bool(
                entry.get("is_pinned", False), context=f"{context}.is_pinned", error_cls=StorageError
            ),
            status=DeviceStatus(entry.get("status", "unknown")),
            deleted=normalize_bool(entry.get("deleted", False), context=f"{context}.deleted", error_cls=StorageError),
            stamps={name: Stamp.from_value(value) for name, value in entry.get("stamps", {}).items()},
        )
    except DeltaValidationError as exc:
        raise StorageError(f"Invalid device entry {context}: {exc}") from exc
