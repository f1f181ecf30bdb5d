"""Resolve a user-supplied hint (id, id prefix, MAC or name) to one device."""

from __future__ import annotations

from collections.abc import Sequence

from anywake.core.errors import DeviceSelectionError
from anywake.core.model import Device


def match_score(device: Device, hint: str) -> int:
    lowered = hint.strip().lower()
    if not lowered:
        return 0
    if device.id.lower() == lowered or device.address.mac.lower() == lowered:
        return 4
    if device.name.lower() == lowered:
        return 3
    if device.id.lower().startswith(lowered):
        return 2
    if lowered in device.name.lower():
        return 1
    return 0


def resolve_device(devices: Sequence[Device], hint: str) -> Device:
    best_score = 0
    candidates: list[Device] = []
    for device in devices:
        score = match_score(device, hint)
        if score > best_score:
            best_score = score
            candidates = [device]
        elif score and score == best_score:
            candidates.append(device)

    if not candidates:
        raise DeviceSelectionError(f"No device found matching '{hint}'")
    if len(candidates) > 1:
        candidate_desc = ", ".join(f"{d.id[:8]} ({d.name})" for d in candidates)
        raise DeviceSelectionError(
            f"Multiple devices match '{hint}': {candidate_desc}. Use the device id to choose one."
        )
    return candidates[0]
