"""Wake capability and status probe backed by external commands."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from anywake.core.errors import CapabilityFailedError
from anywake.core.model import DeviceAddress

LOGGER = logging.getLogger(__name__)

DEFAULT_WAKE_COMMAND = ("wakeonlan", "{mac}")
DEFAULT_PING_COMMAND = ("ping", "-c", "1", "-W", "1", "{host}")


async def _run_command(cmd: Sequence[str], timeout_s: float) -> int | None:
    """Return the exit code, or None when the executable cannot be started."""
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return None
    except OSError as exc:
        LOGGER.warning("Could not start %s: %s", cmd[0], exc)
        return None

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        LOGGER.warning("%s timed out after %.1fs", cmd[0], timeout_s)
        return -1

    if process.returncode != 0 and stderr:
        LOGGER.debug("%s -> %s", " ".join(cmd), stderr.decode(errors="replace").strip())
    return process.returncode


class CommandWakeTransport:
    """Hands the magic packet off to a tool such as `wakeonlan` or `etherwake`.

    `{mac}` and `{host}` in the command template are substituted per device.
    """

    def __init__(self, command: Sequence[str] = DEFAULT_WAKE_COMMAND, *, timeout_s: float = 5.0) -> None:
        self.command = tuple(command)
        self.timeout_s = timeout_s

    async def attempt_wake(self, address: DeviceAddress) -> bool:
        cmd = [part.format(mac=address.mac, host=address.host or "") for part in self.command]
        returncode = await _run_command(cmd, self.timeout_s)
        if returncode is None:
            raise CapabilityFailedError(f"Wake command '{cmd[0]}' not found or not executable")
        return returncode == 0


class PingProbe:
    def __init__(self, command: Sequence[str] = DEFAULT_PING_COMMAND, *, timeout_s: float = 3.0) -> None:
        self.command = tuple(command)
        self.timeout_s = timeout_s

    async def probe(self, address: DeviceAddress) -> bool | None:
        if not address.host:
            return None
        cmd = [part.format(mac=address.mac, host=address.host) for part in self.command]
        returncode = await _run_command(cmd, self.timeout_s)
        if returncode is None:
            return None
        return returncode == 0
