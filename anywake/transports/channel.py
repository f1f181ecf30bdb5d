"""Peer channel: per-peer reachability plus ordered inbound delivery."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from functools import partial

from anywake.core.errors import MessageFormatError, TransportConnectError, TransportSendError, UnreachableError
from anywake.transports.base import PeerLink, PeerState
from anywake.transports.codec import FrameDecoder, PeerMessage, decode, encode

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str, PeerMessage], Awaitable[None] | None]
StateHandler = Callable[[str, PeerState, PeerState], None]


class PeerChannel:
    """Bidirectional message transport between this node and its peers.

    `send` never suspends and never buffers: a peer that is not Reachable
    fails immediately with UnreachableError. Inbound messages from all links
    go through one queue and are handed to the handlers one at a time, so a
    single sender's messages are seen in the order they were sent.
    """

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        self._links: dict[str, PeerLink] = {}
        self._states: dict[str, PeerState] = {}
        self._decoders: dict[str, FrameDecoder] = {}
        self._handlers: list[MessageHandler] = []
        self._state_handlers: list[StateHandler] = []
        self._inbox: asyncio.Queue[tuple[str, PeerMessage]] = asyncio.Queue()
        self._delivery: asyncio.Task[None] | None = None

    def attach(self, link: PeerLink) -> None:
        if link.peer_id in self._links:
            raise ValueError(f"Peer '{link.peer_id}' already attached")
        self._links[link.peer_id] = link
        self._states[link.peer_id] = PeerState.DISCONNECTED
        self._decoders[link.peer_id] = FrameDecoder()
        link.bind(partial(self._on_data, link.peer_id), partial(self._on_state, link.peer_id))

    def on_receive(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def on_state_change(self, handler: StateHandler) -> None:
        self._state_handlers.append(handler)

    def state(self, peer_id: str) -> PeerState:
        return self._states.get(peer_id, PeerState.DISCONNECTED)

    def peers(self) -> list[str]:
        return list(self._links)

    def reachable_peers(self) -> list[str]:
        return [peer_id for peer_id, state in self._states.items() if state is PeerState.REACHABLE]

    def start(self) -> None:
        if self._delivery is None or self._delivery.done():
            self._delivery = asyncio.get_running_loop().create_task(self._deliver())

    async def connect(self) -> None:
        self.start()
        for peer_id, link in self._links.items():
            try:
                await link.connect()
            except TransportConnectError as exc:
                LOGGER.warning("Could not connect to peer %s: %s", peer_id, exc)

    async def close(self) -> None:
        for link in self._links.values():
            await link.close()
        if self._delivery is not None:
            self._delivery.cancel()
            try:
                await self._delivery
            except asyncio.CancelledError:
                pass
            self._delivery = None

    def send(self, message: PeerMessage, peer_id: str | None = None) -> list[str]:
        """Write a message to one peer, or to every Reachable peer.

        Returns the peers the message was written to.
        """
        if peer_id is not None:
            if self.state(peer_id) is not PeerState.REACHABLE:
                raise UnreachableError(f"Peer '{peer_id}' is not reachable")
            targets = [peer_id]
        else:
            targets = self.reachable_peers()
            if not targets:
                raise UnreachableError("No reachable peers")

        frame = encode(message)
        delivered: list[str] = []
        for target in targets:
            try:
                self._links[target].write(frame)
            except (UnreachableError, TransportSendError) as exc:
                if peer_id is not None:
                    raise
                LOGGER.warning("Send of %s to %s failed: %s", message.type.value, target, exc)
                continue
            delivered.append(target)

        if not delivered:
            raise UnreachableError("No reachable peers accepted the message")
        return delivered

    def _on_data(self, peer_id: str, data: bytes) -> None:
        for frame in self._decoders[peer_id].feed(data):
            try:
                message = decode(frame)
            except MessageFormatError as exc:
                LOGGER.warning("Dropping frame from %s: %s", peer_id, exc)
                continue
            self._inbox.put_nowait((peer_id, message))

    def _on_state(self, peer_id: str, new: PeerState) -> None:
        old = self._states.get(peer_id, PeerState.DISCONNECTED)
        if old is new:
            return
        self._states[peer_id] = new
        if new is PeerState.DISCONNECTED:
            self._decoders[peer_id].reset()
        LOGGER.info("Peer %s: %s -> %s", peer_id, old.value, new.value)
        for handler in list(self._state_handlers):
            try:
                handler(peer_id, old, new)
            except Exception:
                LOGGER.exception("Peer state handler %r failed", handler)

    async def _deliver(self) -> None:
        while True:
            peer_id, message = await self._inbox.get()
            for handler in list(self._handlers):
                try:
                    result = handler(peer_id, message)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    LOGGER.exception("Handler %r failed on %s from %s", handler, message.type.value, peer_id)
