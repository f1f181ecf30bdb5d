"""Peer message format.

Messages are JSON objects, one per line on the wire. Links that carry small
packets (BLE) split a frame into chunks; FrameDecoder reassembles them.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from jsonschema import ValidationError

from anywake.core.errors import DeltaValidationError, MessageFormatError
from anywake.core.model import FieldChange, RegistryDelta, Stamp, WakeRequest, WakeResult
from anywake.core.schema import load_schema_validator, validation_message

LOGGER = logging.getLogger(__name__)
_DELIMITER = b"\n"


class MessageType(str, Enum):
    DELTA_PUSH = "delta_push"
    RESYNC_REQUEST = "resync_request"
    RESYNC_RESPONSE = "resync_response"
    WAKE_REQUEST = "wake_request"
    WAKE_RESULT = "wake_result"


@dataclass(frozen=True)
class PeerMessage:
    type: MessageType
    sender: str
    payload: dict[str, Any] = field(default_factory=dict)
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "sender": self.sender,
            "message_id": self.message_id,
            "payload": self.payload,
        }

    def delta(self) -> RegistryDelta:
        """Field changes carried by a delta push or resync response.

        Malformed entries are logged and skipped; the rest still apply.
        """
        changes: list[FieldChange] = []
        for raw in self.payload.get("changes", []):
            try:
                changes.append(FieldChange.from_dict(raw))
            except DeltaValidationError as exc:
                LOGGER.warning("Dropping malformed change from %s: %s", self.sender, exc)
        return RegistryDelta(tuple(changes))

    def known_stamps(self) -> dict[str, dict[str, Stamp]]:
        """Per-device, per-field stamps the sender of a resync request already holds.

        A bad stamp only costs the sender a resend of that field.
        """
        known: dict[str, dict[str, Stamp]] = {}
        for device_id, fields in self.payload.get("known", {}).items():
            stamps = known.setdefault(device_id, {})
            for field_name, raw in fields.items():
                try:
                    stamps[field_name] = Stamp.from_value(raw)
                except DeltaValidationError as exc:
                    LOGGER.warning("Ignoring bad resync stamp from %s: %s", self.sender, exc)
        return known

    def wake_request(self) -> WakeRequest:
        return WakeRequest.from_dict(self.payload)

    def wake_result(self) -> WakeResult:
        return WakeResult.from_dict(self.payload)


def encode(message: PeerMessage) -> bytes:
    return json.dumps(message.to_dict(), separators=(",", ":")).encode("utf-8") + _DELIMITER


def decode(frame: bytes) -> PeerMessage:
    try:
        doc = json.loads(frame.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MessageFormatError(f"Undecodable peer frame: {exc}") from exc

    validator = load_schema_validator("message.schema.json")
    try:
        validator.validate(doc)
    except ValidationError as exc:
        raise MessageFormatError(f"Peer message validation failed{validation_message(exc)}") from exc

    return PeerMessage(
        type=MessageType(doc["type"]),
        sender=doc["sender"],
        payload=doc["payload"],
        message_id=doc["message_id"],
    )


def split_frame(frame: bytes, chunk_size: int) -> list[bytes]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [frame[i : i + chunk_size] for i in range(0, len(frame), chunk_size)]


class FrameDecoder:
    """Reassemble newline-delimited frames from arbitrary chunks."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        frames: list[bytes] = []
        while True:
            index = self._buffer.find(_DELIMITER)
            if index < 0:
                return frames
            frame = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            if frame:
                frames.append(frame)

    def reset(self) -> None:
        self._buffer.clear()


def create_delta_push(sender: str, delta: RegistryDelta) -> PeerMessage:
    return PeerMessage(type=MessageType.DELTA_PUSH, sender=sender, payload={"changes": delta.to_list()})


def create_resync_request(sender: str, known: dict[str, dict[str, Stamp]]) -> PeerMessage:
    return PeerMessage(
        type=MessageType.RESYNC_REQUEST,
        sender=sender,
        payload={
            "known": {
                device_id: {field_name: stamp.to_list() for field_name, stamp in stamps.items()}
                for device_id, stamps in known.items()
            }
        },
    )


def create_resync_response(sender: str, delta: RegistryDelta) -> PeerMessage:
    return PeerMessage(type=MessageType.RESYNC_RESPONSE, sender=sender, payload={"changes": delta.to_list()})


def create_wake_request(sender: str, request: WakeRequest) -> PeerMessage:
    return PeerMessage(type=MessageType.WAKE_REQUEST, sender=sender, payload=request.to_dict())


def create_wake_result(sender: str, result: WakeResult) -> PeerMessage:
    return PeerMessage(type=MessageType.WAKE_RESULT, sender=sender, payload=result.to_dict())
