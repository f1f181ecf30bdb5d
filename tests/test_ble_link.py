from __future__ import annotations

import asyncio

import pytest

from anywake.core.errors import TransportConnectError, UnreachableError
from anywake.transports.base import PeerState
from anywake.transports.ble_gatt import BLEGATTPeerLink

from conftest import settle

SERVICE = "6e7a0001-3c1f-4d0b-9a57-2f5b8e0d1a10"
WRITE_CHAR = "6e7a0002-3c1f-4d0b-9a57-2f5b8e0d1a10"
NOTIFY_CHAR = "6e7a0003-3c1f-4d0b-9a57-2f5b8e0d1a10"


class FakeServices:
    def __init__(self, uuids: set[str]) -> None:
        self.uuids = uuids

    def get_service(self, uuid: str) -> object | None:
        return object() if uuid in self.uuids else None


class FakeBleakClient:
    def __init__(self, address: str, *, timeout: float, disconnected_callback, services: set[str], fail_write=False):
        self.address = address
        self.timeout = timeout
        self.disconnected_callback = disconnected_callback
        self.services = FakeServices(services)
        self.fail_write = fail_write
        self.connected = False
        self.notify_handler = None
        self.writes: list[tuple[str, bytes, bool]] = []

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def start_notify(self, uuid: str, handler) -> None:
        assert uuid == NOTIFY_CHAR
        self.notify_handler = handler

    async def stop_notify(self, uuid: str) -> None:
        self.notify_handler = None

    async def write_gatt_char(self, uuid: str, data: bytes, response: bool = False) -> None:
        if self.fail_write:
            raise OSError("write failed")
        self.writes.append((uuid, bytes(data), response))


def _link(clients: list[FakeBleakClient], *, services: set[str] | None = None, **client_kwargs) -> BLEGATTPeerLink:
    def factory(address: str, **kwargs) -> FakeBleakClient:
        client = FakeBleakClient(
            address,
            services={SERVICE} if services is None else services,
            **kwargs,
            **client_kwargs,
        )
        clients.append(client)
        return client

    return BLEGATTPeerLink(
        "watch",
        "AA:BB:CC:00:11:22",
        service_uuid=SERVICE,
        write_char_uuid=WRITE_CHAR,
        notify_char_uuid=NOTIFY_CHAR,
        chunk_size=4,
        client_factory=factory,
    )


def test_write_before_connect_is_unreachable() -> None:
    link = _link([])
    with pytest.raises(UnreachableError):
        link.write(b"hello\n")


def test_connect_write_and_notify() -> None:
    async def scenario():
        clients: list[FakeBleakClient] = []
        states: list[PeerState] = []
        received: list[bytes] = []
        link = _link(clients)
        link.bind(received.append, states.append)

        await link.connect()
        link.write(b"hello\n")
        await settle()
        clients[0].notify_handler(7, bytearray(b"pong\n"))
        await link.close()
        return clients[0], states, received

    client, states, received = asyncio.run(scenario())
    assert [chunk for _, chunk, _ in client.writes] == [b"hell", b"o\n"]
    assert all(uuid == WRITE_CHAR and response for uuid, _, response in client.writes)
    assert received == [b"pong\n"]
    assert states == [PeerState.CONNECTING, PeerState.REACHABLE, PeerState.DISCONNECTED]
    assert client.connected is False


def test_missing_service_fails_connect() -> None:
    async def scenario():
        clients: list[FakeBleakClient] = []
        states: list[PeerState] = []
        link = _link(clients, services=set())
        link.bind(lambda data: None, states.append)
        with pytest.raises(TransportConnectError):
            await link.connect()
        return clients[0], states

    client, states = asyncio.run(scenario())
    assert client.connected is False
    assert states == [PeerState.CONNECTING, PeerState.DISCONNECTED]


def test_remote_disconnect_reports_state() -> None:
    async def scenario():
        clients: list[FakeBleakClient] = []
        states: list[PeerState] = []
        link = _link(clients)
        link.bind(lambda data: None, states.append)
        await link.connect()
        clients[0].disconnected_callback(clients[0])
        with pytest.raises(UnreachableError):
            link.write(b"late\n")
        return states

    assert asyncio.run(scenario())[-1] is PeerState.DISCONNECTED


def test_failed_write_drops_the_session() -> None:
    async def scenario():
        clients: list[FakeBleakClient] = []
        states: list[PeerState] = []
        link = _link(clients, fail_write=True)
        link.bind(lambda data: None, states.append)
        await link.connect()
        link.write(b"hello\n")
        await settle()
        return states

    assert asyncio.run(scenario())[-1] is PeerState.DISCONNECTED
