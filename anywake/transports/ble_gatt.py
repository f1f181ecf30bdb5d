"""BLE GATT peer link, for a companion device exposing the sync service."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from anywake.core.errors import TransportConnectError, UnreachableError
from anywake.transports.base import PeerState
from anywake.transports.codec import split_frame

LOGGER = logging.getLogger(__name__)


def _bleak_client_factory() -> Callable[..., Any]:
    try:
        from bleak import BleakClient  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return BleakClient


class BLEGATTPeerLink:
    """Frames are written to one characteristic and read back via notifications.

    Frames larger than `chunk_size` are split; the channel's FrameDecoder
    reassembles them on the other side. Writes go through an ordered outbox
    drained by a single task so `write` itself never suspends.
    """

    def __init__(
        self,
        peer_id: str,
        mac: str,
        *,
        service_uuid: str,
        write_char_uuid: str,
        notify_char_uuid: str,
        chunk_size: int = 180,
        write_with_response: bool = True,
        timeout_s: float = 10.0,
        client_factory: Callable[..., Any] | None = None,
    ) -> None:
        self.peer_id = peer_id
        self.mac = mac
        self.service_uuid = service_uuid
        self.write_char_uuid = write_char_uuid
        self.notify_char_uuid = notify_char_uuid
        self.chunk_size = chunk_size
        self.write_with_response = write_with_response
        self.timeout_s = timeout_s
        self._client_factory = client_factory
        self._client: Any = None
        self._state = PeerState.DISCONNECTED
        self._outbox: asyncio.Queue[bytes] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None
        self._on_data: Callable[[bytes], None] | None = None
        self._on_state: Callable[[PeerState], None] | None = None

    def bind(self, on_data: Callable[[bytes], None], on_state: Callable[[PeerState], None]) -> None:
        self._on_data = on_data
        self._on_state = on_state

    def write(self, data: bytes) -> None:
        if self._state is not PeerState.REACHABLE:
            raise UnreachableError(f"BLE link to {self.mac} is not connected")
        for chunk in split_frame(data, self.chunk_size):
            self._outbox.put_nowait(chunk)

    async def connect(self) -> None:
        factory = self._client_factory or _bleak_client_factory()
        self._report(PeerState.CONNECTING)
        client = factory(self.mac, timeout=self.timeout_s, disconnected_callback=self._handle_disconnect)
        try:
            await client.connect()
            if client.services.get_service(self.service_uuid) is None:
                raise TransportConnectError(f"Device {self.mac} does not expose service {self.service_uuid}")
            await client.start_notify(self.notify_char_uuid, self._notify_handler)
        except TransportConnectError:
            self._report(PeerState.DISCONNECTED)
            await _quiet_disconnect(client)
            raise
        except Exception as exc:
            self._report(PeerState.DISCONNECTED)
            await _quiet_disconnect(client)
            raise TransportConnectError(f"BLE connect failed for {self.mac}: {exc}") from exc

        self._client = client
        self._writer = asyncio.get_running_loop().create_task(self._drain())
        self._report(PeerState.REACHABLE)

    async def close(self) -> None:
        client = self._client
        self._stop_writer()
        self._client = None
        if client is not None:
            try:
                await client.stop_notify(self.notify_char_uuid)
            except Exception as exc:
                LOGGER.debug("stop_notify on %s failed: %s", self.mac, exc)
            await _quiet_disconnect(client)
        self._report(PeerState.DISCONNECTED)

    def _notify_handler(self, _: int | str, data: bytearray) -> None:
        if self._on_data is not None:
            self._on_data(bytes(data))

    def _handle_disconnect(self, _client: Any) -> None:
        LOGGER.info("BLE peer %s (%s) disconnected", self.peer_id, self.mac)
        self._stop_writer()
        self._client = None
        self._report(PeerState.DISCONNECTED)

    def _stop_writer(self) -> None:
        if self._writer is not None:
            self._writer.cancel()
            self._writer = None
        while not self._outbox.empty():
            self._outbox.get_nowait()

    def _report(self, state: PeerState) -> None:
        if state is self._state:
            return
        self._state = state
        if self._on_state is not None:
            self._on_state(state)

    async def _drain(self) -> None:
        while True:
            chunk = await self._outbox.get()
            try:
                await self._client.write_gatt_char(
                    self.write_char_uuid,
                    chunk,
                    response=self.write_with_response,
                )
            except Exception as exc:
                LOGGER.warning("BLE write to %s failed: %s", self.mac, exc)
                # a half-written frame is unrecoverable; drop the session
                asyncio.get_running_loop().create_task(self.close())
                return


async def _quiet_disconnect(client: Any) -> None:
    try:
        await client.disconnect()
    except Exception as exc:
        LOGGER.debug("BLE disconnect failed: %s", exc)
