"""Settings loading from the user's YAML config file."""

from __future__ import annotations

import logging
import os
import platform
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jsonschema import ValidationError

from anywake.core.errors import ConfigError
from anywake.core.schema import load_schema_validator, normalize_bool, read_yaml, validation_message
from anywake.core.snapshot import DEFAULT_SNAPSHOT_LIMIT
from anywake.transports.command import DEFAULT_WAKE_COMMAND

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BLESettings:
    service_uuid: str = "6e7a0001-3c1f-4d0b-9a57-2f5b8e0d1a10"
    write_char_uuid: str = "6e7a0002-3c1f-4d0b-9a57-2f5b8e0d1a10"
    notify_char_uuid: str = "6e7a0003-3c1f-4d0b-9a57-2f5b8e0d1a10"
    chunk_size: int = 180
    timeout_s: float = 10.0


@dataclass(frozen=True)
class Settings:
    node_id: str
    store_path: Path
    wake_capable: bool = True
    wake_peer: str | None = None
    wake_timeout_s: float = 5.0
    dedupe_retention_s: float = 60.0
    snapshot_limit: int = DEFAULT_SNAPSHOT_LIMIT
    snapshot_interval_s: float = 900.0
    status_interval_s: float = 20.0
    wake_command: tuple[str, ...] = DEFAULT_WAKE_COMMAND
    ble: BLESettings = field(default_factory=BLESettings)


def config_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "anywake", xdg_data / "anywake"


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ConfigError(f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string")
    return normalized


def _build_ble(doc: dict[str, Any]) -> BLESettings:
    defaults = BLESettings()
    return BLESettings(
        service_uuid=_normalize_uuid(doc.get("service_uuid", defaults.service_uuid), context="ble.service_uuid"),
        write_char_uuid=_normalize_uuid(
            doc.get("write_char_uuid", defaults.write_char_uuid), context="ble.write_char_uuid"
        ),
        notify_char_uuid=_normalize_uuid(
            doc.get("notify_char_uuid", defaults.notify_char_uuid), context="ble.notify_char_uuid"
        ),
        chunk_size=int(doc.get("chunk_size", defaults.chunk_size)),
        timeout_s=float(doc.get("timeout_s", defaults.timeout_s)),
    )


def build_settings(doc: dict[str, Any], source: Path | str = "<settings>") -> Settings:
    validator = load_schema_validator("config.schema.json")
    try:
        validator.validate(doc)
    except ValidationError as exc:
        raise ConfigError(f"Settings validation failed for {source}{validation_message(exc)}") from exc

    _, data_dir = config_dirs()
    return Settings(
        node_id=doc.get("node_id") or platform.node() or "anywake",
        store_path=Path(doc["store_path"]).expanduser() if "store_path" in doc else data_dir / "devices.yaml",
        wake_capable=normalize_bool(doc.get("wake_capable", True), context="wake_capable", error_cls=ConfigError),
        wake_peer=doc.get("wake_peer"),
        wake_timeout_s=float(doc.get("wake_timeout_s", 5.0)),
        dedupe_retention_s=float(doc.get("dedupe_retention_s", 60.0)),
        snapshot_limit=int(doc.get("snapshot_limit", DEFAULT_SNAPSHOT_LIMIT)),
        snapshot_interval_s=float(doc.get("snapshot_interval_s", 900.0)),
        status_interval_s=float(doc.get("status_interval_s", 20.0)),
        wake_command=tuple(doc.get("wake_command", DEFAULT_WAKE_COMMAND)),
        ble=_build_ble(doc.get("ble", {})),
    )


def load_settings(path: Path | None = None) -> Settings:
    """Read settings from `path` or the XDG config dir; a missing file means defaults."""
    if path is None:
        config_dir, _ = config_dirs()
        path = config_dir / "config.yaml"
    if not path.exists():
        LOGGER.debug("No settings file at %s, using defaults", path)
        return build_settings({}, path)
    return build_settings(read_yaml(path, ConfigError) or {}, path)
