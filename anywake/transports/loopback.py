"""In-process peer links, for nodes hosted on one event loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from anywake.core.errors import UnreachableError
from anywake.transports.base import PeerState


class LoopbackWire:
    """A point-to-point connection between two nodes on the same loop.

    `drop()` and `restore()` simulate the reachability signal a real
    transport would raise when the peers move out of and back into range.
    """

    def __init__(self, node_a: str, node_b: str) -> None:
        self.up = True
        # end attached to node_a talks to node_b, and vice versa
        self.a = LoopbackLink(self, peer_id=node_b)
        self.b = LoopbackLink(self, peer_id=node_a)
        self.a.other = self.b
        self.b.other = self.a

    def drop(self) -> None:
        self.up = False
        for end in (self.a, self.b):
            end.report(PeerState.DISCONNECTED)

    def restore(self) -> None:
        self.up = True
        self._settle()

    def _settle(self) -> None:
        if self.up and self.a.opened and self.b.opened:
            for end in (self.a, self.b):
                end.report(PeerState.REACHABLE)


class LoopbackLink:
    def __init__(self, wire: LoopbackWire, *, peer_id: str) -> None:
        self.peer_id = peer_id
        self.wire = wire
        self.other: LoopbackLink | None = None
        self.opened = False
        self.state = PeerState.DISCONNECTED
        self._on_data: Callable[[bytes], None] | None = None
        self._on_state: Callable[[PeerState], None] | None = None

    def bind(self, on_data: Callable[[bytes], None], on_state: Callable[[PeerState], None]) -> None:
        self._on_data = on_data
        self._on_state = on_state

    def report(self, state: PeerState) -> None:
        self.state = state
        if self._on_state is not None:
            self._on_state(state)

    def write(self, data: bytes) -> None:
        if self.state is not PeerState.REACHABLE or self.other is None:
            raise UnreachableError(f"Loopback link to {self.peer_id} is down")
        asyncio.get_running_loop().call_soon(self.other.receive, data)

    def receive(self, data: bytes) -> None:
        # bytes still in flight when the wire dropped are lost
        if self.state is PeerState.REACHABLE and self._on_data is not None:
            self._on_data(data)

    async def connect(self) -> None:
        self.opened = True
        self.report(PeerState.CONNECTING)
        await asyncio.sleep(0)
        self.wire._settle()

    async def close(self) -> None:
        self.opened = False
        self.report(PeerState.DISCONNECTED)
        if self.other is not None and self.other.state is not PeerState.DISCONNECTED:
            self.other.report(PeerState.CONNECTING if self.other.opened else PeerState.DISCONNECTED)
