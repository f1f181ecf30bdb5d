"""Core data models used across registry, sync, dispatcher, and CLI."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, NamedTuple

from anywake.core.errors import CapabilityFailedError, DeltaValidationError, UnreachableError, WakeTimeoutError

_MAC_RE = re.compile(r"^[0-9A-F]{2}(?::[0-9A-F]{2}){5}$")

USER_FIELDS = frozenset({"name", "address", "is_pinned"})
FIELDS = USER_FIELDS | {"status", "deleted"}


class DeviceStatus(str, Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


class WakeOutcome(str, Enum):
    SENT = "sent"
    UNREACHABLE_PEER = "unreachable_peer"
    TIMED_OUT = "timed_out"
    CAPABILITY_FAILED = "capability_failed"


class Stamp(NamedTuple):
    """Write timestamp; the origin node id breaks ties between equal times."""

    time: float
    origin: str

    def to_list(self) -> list[Any]:
        return [self.time, self.origin]

    @classmethod
    def from_value(cls, value: Any) -> Stamp:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise DeltaValidationError(f"Stamp must be a [time, origin] pair, got {value!r}")
        stamp_time, origin = value
        if isinstance(stamp_time, bool) or not isinstance(stamp_time, (int, float)) or not isinstance(origin, str):
            raise DeltaValidationError(f"Stamp must be a [time, origin] pair, got {value!r}")
        return cls(float(stamp_time), origin)


def normalize_mac(value: str) -> str:
    normalized = value.strip().upper().replace("-", ":")
    if not _MAC_RE.match(normalized):
        raise DeltaValidationError(f"Invalid MAC address '{value}'")
    return normalized


@dataclass(frozen=True)
class DeviceAddress:
    mac: str
    host: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"mac": self.mac, "host": self.host}

    @classmethod
    def from_value(cls, value: Any) -> DeviceAddress:
        if isinstance(value, DeviceAddress):
            return cls(mac=normalize_mac(value.mac), host=value.host)
        if isinstance(value, str):
            return cls(mac=normalize_mac(value))
        if isinstance(value, dict) and isinstance(value.get("mac"), str):
            host = value.get("host")
            if host is not None and not isinstance(host, str):
                raise DeltaValidationError(f"Address host must be a string, got {host!r}")
            return cls(mac=normalize_mac(value["mac"]), host=host or None)
        raise DeltaValidationError(f"Invalid address value {value!r}")


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    address: DeviceAddress
    is_pinned: bool = False
    status: DeviceStatus = DeviceStatus.UNKNOWN
    pinned_at: Stamp | None = field(default=None, compare=False)
    sequence: int = field(default=0, compare=False)


@dataclass(frozen=True)
class FieldChange:
    device_id: str
    field: str
    value: Any
    stamp: Stamp

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if isinstance(value, DeviceAddress):
            value = value.to_dict()
        elif isinstance(value, DeviceStatus):
            value = value.value
        return {
            "device_id": self.device_id,
            "field": self.field,
            "value": value,
            "stamp": self.stamp.to_list(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldChange:
        try:
            device_id = data["device_id"]
            field_name = data["field"]
            value = data["value"]
            stamp = Stamp.from_value(data["stamp"])
        except (KeyError, TypeError) as exc:
            raise DeltaValidationError(f"Malformed field change {data!r}") from exc
        if not isinstance(device_id, str) or not device_id:
            raise DeltaValidationError(f"Malformed device id in {data!r}")
        return cls(device_id=device_id, field=field_name, value=value, stamp=stamp)


@dataclass(frozen=True)
class RegistryDelta:
    changes: tuple[FieldChange, ...] = ()

    def __iter__(self) -> Iterator[FieldChange]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def is_empty(self) -> bool:
        return not self.changes

    def device_ids(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(change.device_id for change in self.changes))

    def to_list(self) -> list[dict[str, Any]]:
        return [change.to_dict() for change in self.changes]


@dataclass(frozen=True)
class WakeRequest:
    device_id: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    issued_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"device_id": self.device_id, "request_id": self.request_id, "issued_at": self.issued_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WakeRequest:
        return cls(
            device_id=data["device_id"],
            request_id=data["request_id"],
            issued_at=float(data.get("issued_at", time.time())),
        )


@dataclass(frozen=True)
class WakeResult:
    request_id: str
    outcome: WakeOutcome
    device_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is WakeOutcome.SENT

    @property
    def retryable(self) -> bool:
        return self.outcome in (WakeOutcome.TIMED_OUT, WakeOutcome.CAPABILITY_FAILED)

    def raise_for_outcome(self) -> None:
        if self.outcome is WakeOutcome.UNREACHABLE_PEER:
            raise UnreachableError(f"No peer reachable for wake request {self.request_id}")
        if self.outcome is WakeOutcome.TIMED_OUT:
            raise WakeTimeoutError(f"Wake request {self.request_id} timed out")
        if self.outcome is WakeOutcome.CAPABILITY_FAILED:
            raise CapabilityFailedError(f"Wake capability failed for request {self.request_id}")

    def to_dict(self) -> dict[str, Any]:
        return {"request_id": self.request_id, "outcome": self.outcome.value, "device_id": self.device_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WakeResult:
        return cls(
            request_id=data["request_id"],
            outcome=WakeOutcome(data["outcome"]),
            device_id=data.get("device_id"),
        )
