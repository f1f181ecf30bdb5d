from __future__ import annotations

import json

import pytest

from anywake.core.errors import MessageFormatError
from anywake.core.model import DeviceAddress, FieldChange, RegistryDelta, Stamp, WakeOutcome, WakeRequest, WakeResult
from anywake.transports.codec import (
    FrameDecoder,
    MessageType,
    create_delta_push,
    create_resync_request,
    create_wake_request,
    create_wake_result,
    decode,
    encode,
    split_frame,
)


def test_delta_push_carries_wire_values() -> None:
    delta = RegistryDelta(
        (
            FieldChange("d1", "address", DeviceAddress("AA:BB:CC:DD:EE:FF", "10.0.0.2"), Stamp(1.5, "phone")),
            FieldChange("d1", "is_pinned", True, Stamp(2.0, "phone")),
        )
    )
    frame = encode(create_delta_push("phone", delta))

    assert frame.endswith(b"\n")
    doc = json.loads(frame)
    assert doc["type"] == "delta_push"
    assert doc["payload"]["changes"][0]["value"] == {"mac": "AA:BB:CC:DD:EE:FF", "host": "10.0.0.2"}
    assert doc["payload"]["changes"][0]["stamp"] == [1.5, "phone"]

    message = decode(frame.rstrip(b"\n"))
    assert message.type is MessageType.DELTA_PUSH
    assert [c.stamp for c in message.delta()] == [Stamp(1.5, "phone"), Stamp(2.0, "phone")]


def test_malformed_changes_in_a_push_are_skipped() -> None:
    raw = {
        "type": "delta_push",
        "sender": "watch",
        "message_id": "m1",
        "payload": {
            "changes": [
                {"device_id": "d1", "field": "name", "value": "Desk", "stamp": [1.0, "watch"]},
                {"device_id": "d1", "field": "name", "value": "Desk"},
                {"device_id": "d1", "field": "name", "value": "Desk", "stamp": ["soon", "watch"]},
            ]
        },
    }
    message = decode(json.dumps(raw).encode())
    assert len(message.delta()) == 1


def test_resync_request_known_stamps_per_field() -> None:
    known = {"d1": {"name": Stamp(3.0, "phone"), "address": Stamp(1.0, "watch")}}
    message = decode(encode(create_resync_request("watch", known)).strip())
    assert message.known_stamps() == known


def test_bad_resync_stamp_only_drops_that_field() -> None:
    raw = {
        "type": "resync_request",
        "sender": "watch",
        "message_id": "m1",
        "payload": {"known": {"d1": {"name": [3.0, "phone"], "address": ["later", "watch"]}}},
    }
    assert decode(json.dumps(raw).encode()).known_stamps() == {"d1": {"name": Stamp(3.0, "phone")}}


def test_wake_messages() -> None:
    request = WakeRequest(device_id="d1", request_id="r1", issued_at=10.0)
    assert decode(encode(create_wake_request("watch", request)).strip()).wake_request() == request

    result = WakeResult("r1", WakeOutcome.TIMED_OUT, "d1")
    assert decode(encode(create_wake_result("phone", result)).strip()).wake_result() == result


@pytest.mark.parametrize(
    "frame",
    [
        b"\xff\xfe",
        b"[1, 2]",
        b'{"type": "shout", "sender": "x", "message_id": "m", "payload": {}}',
        b'{"type": "wake_request", "sender": "x", "message_id": "m", "payload": {"device_id": "d1"}}',
        b'{"type": "resync_request", "sender": "x", "message_id": "m", "payload": {"known": {"d1": [1.0, "x"]}}}',
        b'{"type": "wake_result", "sender": "x", "message_id": "m", '
        b'"payload": {"request_id": "r1", "outcome": "maybe"}}',
    ],
)
def test_invalid_frames_raise(frame: bytes) -> None:
    with pytest.raises(MessageFormatError):
        decode(frame)


def test_frame_decoder_reassembles_chunks() -> None:
    first = encode(create_resync_request("watch", {}))
    second = encode(create_resync_request("phone", {"d1": {"name": Stamp(1.0, "phone")}}))
    chunks = split_frame(first + second, 7)
    assert all(len(chunk) <= 7 for chunk in chunks)

    decoder = FrameDecoder()
    frames: list[bytes] = []
    for chunk in chunks:
        frames.extend(decoder.feed(chunk))

    assert [decode(frame).sender for frame in frames] == ["watch", "phone"]


def test_frame_decoder_reset_discards_partial_frame() -> None:
    decoder = FrameDecoder()
    assert decoder.feed(b'{"type": "delta') == []
    decoder.reset()
    frame = encode(create_resync_request("watch", {}))
    assert decoder.feed(frame) == [frame.rstrip(b"\n")]


def test_split_frame_rejects_bad_chunk_size() -> None:
    with pytest.raises(ValueError):
        split_frame(b"abc", 0)
