"""Wake command dispatch, local or forwarded to the network-capable peer."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from anywake.core.errors import NotFoundError, TransportError, UnreachableError
from anywake.core.model import Device, WakeOutcome, WakeRequest, WakeResult
from anywake.core.registry import DeviceRegistry
from anywake.transports.base import WakeTransport
from anywake.transports.channel import PeerChannel
from anywake.transports.codec import MessageType, PeerMessage, create_wake_request, create_wake_result

LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class _PendingForward:
    """One forwarded attempt waiting on the peers it went out to."""

    future: asyncio.Future[WakeResult]
    waiting: set[str] = field(default_factory=set)
    fallback: WakeResult | None = None

    def answer(self, peer_id: str, result: WakeResult) -> None:
        if self.future.done():
            return
        self.waiting.discard(peer_id)
        if result.outcome is WakeOutcome.SENT:
            self.future.set_result(result)
            return
        if self.fallback is None:
            self.fallback = result
        if not self.waiting:
            self.future.set_result(self.fallback)


class WakeDispatcher:
    """Issues wake requests and serves the ones forwarded by peers.

    A node with a `wake_transport` wakes devices itself. Any other node sends
    a WakeRequest over the channel and waits up to `timeout_s` for the result
    carrying the same request id; it never retries on its own. With no
    `wake_peer` the request goes to every Reachable peer and the first `sent`
    answer wins; failing that it waits until every target has answered. The
    serving side remembers request ids for `retention_s`, so a retried request
    that already went out is answered from memory instead of waking twice.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        channel: PeerChannel,
        *,
        wake_transport: WakeTransport | None = None,
        wake_peer: str | None = None,
        timeout_s: float = 5.0,
        retention_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.channel = channel
        self.wake_transport = wake_transport
        self.wake_peer = wake_peer
        self.timeout_s = timeout_s
        self.retention_s = retention_s
        self._clock = clock
        self._pending: dict[str, list[_PendingForward]] = {}
        self._issued: dict[str, tuple[WakeRequest, float]] = {}
        self._served: dict[str, tuple[asyncio.Future[WakeResult], float]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    async def dispatch(self, device_id: str) -> WakeResult:
        device = self.registry.require(device_id)
        request = WakeRequest(device_id=device.id)
        self._prune()
        self._issued[request.request_id] = (request, self._clock() + self.retention_s)
        return await self._attempt(request, device)

    async def retry(self, request_id: str) -> WakeResult:
        """Re-send an earlier request under the same id."""
        self._prune()
        issued = self._issued.get(request_id)
        if issued is None:
            raise NotFoundError(f"Unknown or expired wake request '{request_id}'")
        request = issued[0]
        device = self.registry.require(request.device_id)
        return await self._attempt(request, device)

    async def _attempt(self, request: WakeRequest, device: Device) -> WakeResult:
        if self.wake_transport is not None:
            outcome = await self._wake_locally(device)
            result = WakeResult(request.request_id, outcome, device.id)
        else:
            result = await self._forward(request)
        LOGGER.info("Wake %s (%s): %s", device.name, request.request_id, result.outcome.value)
        return result

    async def _wake_locally(self, device: Device) -> WakeOutcome:
        assert self.wake_transport is not None
        try:
            sent = await self.wake_transport.attempt_wake(device.address)
        except TransportError as exc:
            LOGGER.warning("Wake capability failed for %s: %s", device.address.mac, exc)
            return WakeOutcome.CAPABILITY_FAILED
        return WakeOutcome.SENT if sent else WakeOutcome.CAPABILITY_FAILED

    async def _forward(self, request: WakeRequest) -> WakeResult:
        pending = _PendingForward(asyncio.get_running_loop().create_future())
        self._pending.setdefault(request.request_id, []).append(pending)
        try:
            try:
                targets = self.channel.send(create_wake_request(self.channel.node_id, request), self.wake_peer)
            except UnreachableError as exc:
                LOGGER.info("Wake request %s not sent: %s", request.request_id, exc)
                return WakeResult(request.request_id, WakeOutcome.UNREACHABLE_PEER, request.device_id)
            pending.waiting.update(targets)
            try:
                return await asyncio.wait_for(pending.future, timeout=self.timeout_s)
            except asyncio.TimeoutError:
                return WakeResult(request.request_id, WakeOutcome.TIMED_OUT, request.device_id)
        finally:
            waiters = self._pending.get(request.request_id)
            if waiters and pending in waiters:
                waiters.remove(pending)
                if not waiters:
                    del self._pending[request.request_id]

    async def handle_message(self, peer_id: str, message: PeerMessage) -> None:
        if message.type is MessageType.WAKE_RESULT:
            result = message.wake_result()
            waiters = self._pending.get(result.request_id, [])
            if not waiters:
                LOGGER.debug("Late or unknown wake result %s from %s", result.request_id, peer_id)
            for pending in list(waiters):
                pending.answer(peer_id, result)
        elif message.type is MessageType.WAKE_REQUEST:
            # serve off the delivery task so later messages are not held up
            task = asyncio.get_running_loop().create_task(self._serve(peer_id, message.wake_request()))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _serve(self, peer_id: str, request: WakeRequest) -> None:
        result = await self._wake_once(request)
        try:
            self.channel.send(create_wake_result(self.channel.node_id, result), peer_id)
        except UnreachableError as exc:
            LOGGER.info("Could not return wake result %s to %s: %s", request.request_id, peer_id, exc)

    async def _wake_once(self, request: WakeRequest) -> WakeResult:
        self._prune()
        served = self._served.get(request.request_id)
        if served is not None:
            LOGGER.info("Duplicate wake request %s suppressed", request.request_id)
            return await asyncio.shield(served[0])

        future: asyncio.Future[WakeResult] = asyncio.get_running_loop().create_future()
        self._served[request.request_id] = (future, self._clock() + self.retention_s)
        try:
            device = self.registry.get(request.device_id)
            if self.wake_transport is None:
                LOGGER.warning("Wake request %s received but this node cannot wake devices", request.request_id)
                outcome = WakeOutcome.CAPABILITY_FAILED
            elif device is None:
                LOGGER.warning("Wake request %s for unknown device %s", request.request_id, request.device_id)
                outcome = WakeOutcome.CAPABILITY_FAILED
            else:
                outcome = await self._wake_locally(device)
            result = WakeResult(request.request_id, outcome, request.device_id)
            future.set_result(result)
        finally:
            if not future.done():
                future.cancel()
            if future.cancelled() or future.result().outcome is not WakeOutcome.SENT:
                # only a wake that went out suppresses later attempts
                self._served.pop(request.request_id, None)
        return result

    def _prune(self) -> None:
        now = self._clock()
        for request_id, (future, expires) in list(self._served.items()):
            if future.done() and expires <= now:
                del self._served[request_id]
        for request_id, (_, expires) in list(self._issued.items()):
            if expires <= now:
                del self._issued[request_id]

    async def close(self) -> None:
        for waiters in self._pending.values():
            for pending in waiters:
                pending.future.cancel()
        self._pending.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
