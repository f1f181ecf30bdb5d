"""Canonical device registry with per-field last-writer-wins reconciliation."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from anywake.core.errors import DeltaValidationError, NotFoundError, StorageError
from anywake.core.model import (
    FIELDS,
    USER_FIELDS,
    Device,
    DeviceAddress,
    DeviceStatus,
    FieldChange,
    RegistryDelta,
    Stamp,
)
from anywake.core.storage import DeviceStore, StoredDevice

LOGGER = logging.getLogger(__name__)
_MIN_STEP = 1e-6

ChangeListener = Callable[[RegistryDelta, str | None], None]


@dataclass
class _Entry:
    id: str
    sequence: int
    values: dict[str, Any] = field(
        default_factory=lambda: {
            "name": "",
            "address": None,
            "is_pinned": False,
            "status": DeviceStatus.UNKNOWN,
            "deleted": False,
        }
    )
    stamps: dict[str, Stamp] = field(default_factory=dict)

    @property
    def visible(self) -> bool:
        return not self.values["deleted"] and self.values["address"] is not None

    def copy(self) -> _Entry:
        return _Entry(id=self.id, sequence=self.sequence, values=dict(self.values), stamps=dict(self.stamps))

    def to_device(self) -> Device:
        pinned = self.values["is_pinned"]
        return Device(
            id=self.id,
            name=self.values["name"],
            address=self.values["address"],
            is_pinned=pinned,
            status=self.values["status"],
            pinned_at=self.stamps.get("is_pinned") if pinned else None,
            sequence=self.sequence,
        )


def validate_value(field_name: str, value: Any) -> Any:
    """Return the normalised value for a field or raise DeltaValidationError."""
    if field_name not in FIELDS:
        raise DeltaValidationError(f"Unknown field '{field_name}'")
    if field_name == "name":
        if not isinstance(value, str):
            raise DeltaValidationError(f"Device name must be a string, got {value!r}")
        return value.strip()
    if field_name == "address":
        return DeviceAddress.from_value(value)
    if field_name == "status":
        try:
            return DeviceStatus(value)
        except ValueError as exc:
            raise DeltaValidationError(f"Unknown status {value!r}") from exc
    if not isinstance(value, bool):
        raise DeltaValidationError(f"Field '{field_name}' must be boolean, got {value!r}")
    return value


class DeviceRegistry:
    """Process-wide device list, loaded from and flushed to a DeviceStore.

    Every write carries a Stamp. Remote changes are accepted per
    (device_id, field) only when strictly newer than the recorded stamp, so
    concurrent edits of different fields never clobber each other and the
    final state does not depend on delivery order.
    """

    def __init__(
        self,
        store: DeviceStore,
        *,
        node_id: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.node_id = node_id
        self._store = store
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._listeners: list[ChangeListener] = []
        self._last_time = 0.0
        self._load()

    def _load(self) -> None:
        for stored in self._store.load():
            if stored.id in self._entries:
                raise StorageError(f"Duplicate device id '{stored.id}' in store")
            entry = _Entry(id=stored.id, sequence=len(self._entries))
            entry.values.update(
                name=stored.name,
                address=stored.address,
                is_pinned=stored.is_pinned,
                status=stored.status,
                deleted=stored.deleted,
            )
            entry.stamps.update(stored.stamps)
            self._entries[stored.id] = entry
            for stamp in stored.stamps.values():
                self._last_time = max(self._last_time, stamp.time)
        LOGGER.debug("Loaded %d devices", len(self._entries))

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def get(self, device_id: str) -> Device | None:
        entry = self._entries.get(device_id)
        if entry is None or not entry.visible:
            return None
        return entry.to_device()

    def require(self, device_id: str) -> Device:
        device = self.get(device_id)
        if device is None:
            raise NotFoundError(f"Unknown device '{device_id}'")
        return device

    def all(self) -> list[Device]:
        return [entry.to_device() for entry in self._entries.values() if entry.visible]

    def add(self, name: str, address: DeviceAddress | str | dict[str, Any], *, device_id: str | None = None) -> RegistryDelta:
        device_id = device_id or uuid.uuid4().hex
        if device_id in self._entries:
            raise DeltaValidationError(f"Device id '{device_id}' already exists")
        values = {
            "name": validate_value("name", name),
            "address": validate_value("address", address),
            "is_pinned": False,
        }
        changes = [FieldChange(device_id, name_, value, self._next_stamp()) for name_, value in values.items()]
        return self._commit(changes, source=None)

    def remove(self, device_id: str) -> RegistryDelta:
        self.require(device_id)
        return self._commit([FieldChange(device_id, "deleted", True, self._next_stamp())], source=None)

    def mutate(self, device_id: str, field_name: str, value: Any) -> RegistryDelta:
        if field_name not in USER_FIELDS:
            raise DeltaValidationError(f"Field '{field_name}' cannot be set directly")
        entry = self._entries.get(device_id)
        if entry is None or not entry.visible:
            raise NotFoundError(f"Unknown device '{device_id}'")
        value = validate_value(field_name, value)
        if entry.values[field_name] == value:
            return RegistryDelta()
        return self._commit([FieldChange(device_id, field_name, value, self._next_stamp())], source=None)

    def record_status(self, device_id: str, status: DeviceStatus) -> RegistryDelta:
        """Store the outcome of a status check; unchanged statuses produce no delta."""
        entry = self._entries.get(device_id)
        if entry is None or not entry.visible:
            raise NotFoundError(f"Unknown device '{device_id}'")
        status = validate_value("status", status)
        if entry.values["status"] is status:
            return RegistryDelta()
        return self._commit([FieldChange(device_id, "status", status, self._next_stamp())], source=None)

    def apply(self, delta: Iterable[FieldChange], source: str | None = None) -> RegistryDelta:
        """Apply incoming changes and return the subset that took effect."""
        effective: list[FieldChange] = []
        backup: dict[str, _Entry | None] = {}
        for change in delta:
            try:
                value = validate_value(change.field, change.value)
            except DeltaValidationError as exc:
                LOGGER.warning("Dropping change for device %s from %s: %s", change.device_id, source, exc)
                continue

            self._last_time = max(self._last_time, change.stamp.time)
            entry = self._entries.get(change.device_id)
            current = entry.stamps.get(change.field) if entry else None
            if current is not None and change.stamp <= current:
                continue
            if change.device_id not in backup:
                backup[change.device_id] = entry.copy() if entry else None
            effective.append(
                FieldChange(device_id=change.device_id, field=change.field, value=value, stamp=change.stamp)
            )
            self._write(effective[-1])

        if not effective:
            return RegistryDelta()
        result = RegistryDelta(tuple(effective))
        self._flush_and_notify(result, source, backup)
        return result

    def latest_stamps(self) -> dict[str, dict[str, Stamp]]:
        """Recorded stamp of every field, per device, tombstones included."""
        return {entry.id: dict(entry.stamps) for entry in self._entries.values() if entry.stamps}

    def changes_since(self, known: dict[str, dict[str, Stamp]]) -> RegistryDelta:
        """Every recorded field newer than the caller's stamp for that same field."""
        changes: list[FieldChange] = []
        for entry in self._entries.values():
            floor = known.get(entry.id, {})
            for field_name, stamp in entry.stamps.items():
                seen = floor.get(field_name)
                if seen is None or stamp > seen:
                    changes.append(FieldChange(entry.id, field_name, entry.values[field_name], stamp))
        changes.sort(key=lambda change: change.stamp)
        return RegistryDelta(tuple(changes))

    def _next_stamp(self) -> Stamp:
        now = self._clock()
        if now <= self._last_time:
            now = self._last_time + _MIN_STEP
        self._last_time = now
        return Stamp(now, self.node_id)

    def _write(self, change: FieldChange) -> None:
        entry = self._entries.get(change.device_id)
        if entry is None:
            entry = _Entry(id=change.device_id, sequence=len(self._entries))
            self._entries[change.device_id] = entry
        entry.values[change.field] = change.value
        entry.stamps[change.field] = change.stamp

    def _commit(self, changes: list[FieldChange], *, source: str | None) -> RegistryDelta:
        backup: dict[str, _Entry | None] = {}
        for change in changes:
            if change.device_id not in backup:
                entry = self._entries.get(change.device_id)
                backup[change.device_id] = entry.copy() if entry else None
            self._write(change)
        delta = RegistryDelta(tuple(changes))
        self._flush_and_notify(delta, source, backup)
        return delta

    def _flush_and_notify(self, delta: RegistryDelta, source: str | None, backup: dict[str, _Entry | None]) -> None:
        try:
            self._store.save(self._stored())
        except StorageError:
            # an unsaved change must not linger in memory unbroadcast
            for device_id, previous in backup.items():
                if previous is None:
                    del self._entries[device_id]
                else:
                    self._entries[device_id] = previous
            raise
        for listener in list(self._listeners):
            try:
                listener(delta, source)
            except Exception:
                LOGGER.exception("Registry listener %r failed", listener)

    def _stored(self) -> list[StoredDevice]:
        return [
            StoredDevice(
                id=entry.id,
                name=entry.values["name"],
                address=entry.values["address"],
                is_pinned=entry.values["is_pinned"],
                status=entry.values["status"],
                deleted=entry.values["deleted"],
                stamps=dict(entry.stamps),
            )
            for entry in self._entries.values()
        ]
