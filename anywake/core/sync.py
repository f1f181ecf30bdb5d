"""Cross-peer registry synchronization."""

from __future__ import annotations

import logging

from anywake.core.errors import UnreachableError
from anywake.core.model import RegistryDelta
from anywake.core.registry import DeviceRegistry
from anywake.transports.base import PeerState
from anywake.transports.channel import PeerChannel
from anywake.transports.codec import (
    MessageType,
    PeerMessage,
    create_delta_push,
    create_resync_request,
    create_resync_response,
)

LOGGER = logging.getLogger(__name__)


class SyncCoordinator:
    """Keeps the local registry converged with every peer's.

    Effective registry changes are pushed to all reachable peers except the
    one they came from. Pushes are best effort; whatever a peer misses is
    recovered by the full resync issued each time that peer becomes
    reachable again.
    """

    def __init__(self, registry: DeviceRegistry, channel: PeerChannel) -> None:
        self.registry = registry
        self.channel = channel
        registry.add_listener(self.on_local_change)
        channel.on_state_change(self._on_peer_state)

    def on_local_change(self, delta: RegistryDelta, source: str | None = None) -> None:
        if delta.is_empty():
            return
        targets = [peer_id for peer_id in self.channel.reachable_peers() if peer_id != source]
        if not targets:
            LOGGER.debug("No peers to receive %d changes; left for resync", len(delta))
            return
        message = create_delta_push(self.channel.node_id, delta)
        for peer_id in targets:
            try:
                self.channel.send(message, peer_id)
            except UnreachableError as exc:
                LOGGER.debug("Delta push to %s skipped: %s", peer_id, exc)

    def request_resync(self, peer_id: str | None = None) -> list[str]:
        """Ask one peer, or every reachable peer, for changes we have not seen."""
        message = create_resync_request(self.channel.node_id, self.registry.latest_stamps())
        try:
            return self.channel.send(message, peer_id)
        except UnreachableError as exc:
            LOGGER.info("Resync request not sent: %s", exc)
            return []

    def handle_message(self, peer_id: str, message: PeerMessage) -> None:
        if message.type in (MessageType.DELTA_PUSH, MessageType.RESYNC_RESPONSE):
            applied = self.registry.apply(message.delta(), source=peer_id)
            LOGGER.debug(
                "%s from %s: %d of %d changes applied",
                message.type.value,
                peer_id,
                len(applied),
                len(message.payload.get("changes", [])),
            )
        elif message.type is MessageType.RESYNC_REQUEST:
            changes = self.registry.changes_since(message.known_stamps())
            try:
                self.channel.send(create_resync_response(self.channel.node_id, changes), peer_id)
            except UnreachableError as exc:
                LOGGER.info("Resync response to %s dropped: %s", peer_id, exc)

    def _on_peer_state(self, peer_id: str, old: PeerState, new: PeerState) -> None:
        if new is PeerState.REACHABLE and old is not PeerState.REACHABLE:
            self.request_resync(peer_id)
