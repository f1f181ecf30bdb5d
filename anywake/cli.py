"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path

import typer

from anywake.core.config import Settings, load_settings
from anywake.core.errors import AnywakeError, TransportConnectError
from anywake.core.model import Device, WakeResult
from anywake.core.service import AnywakeNode
from anywake.transports.ble_gatt import BLEGATTPeerLink

app = typer.Typer(help="Keep a synced list of network devices and wake them remotely")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Settings file (default: XDG config dir)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"config": config}


def _build_node(ctx: typer.Context, *, forward_to: str | None = None) -> AnywakeNode:
    settings = load_settings((ctx.obj or {}).get("config"))
    if forward_to is not None:
        settings = replace(settings, wake_capable=False, wake_peer=forward_to)
    node = AnywakeNode(settings)
    for warning in getattr(node, "runtime_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return node


def _ble_link(settings: Settings, mac: str, peer_id: str | None) -> BLEGATTPeerLink:
    return BLEGATTPeerLink(
        peer_id or mac.upper(),
        mac,
        service_uuid=settings.ble.service_uuid,
        write_char_uuid=settings.ble.write_char_uuid,
        notify_char_uuid=settings.ble.notify_char_uuid,
        chunk_size=settings.ble.chunk_size,
        timeout_s=settings.ble.timeout_s,
    )


def _describe(device: Device) -> str:
    host = device.address.host or "-"
    pin = " *" if device.is_pinned else ""
    return f"{device.id[:8]} {device.name} {device.address.mac} {host} [{device.status.value}]{pin}"


@app.command("list")
def list_devices(ctx: typer.Context) -> None:
    """List known devices; pinned devices are marked with '*'."""
    try:
        node = _build_node(ctx)
        devices = node.list_devices()
        if not devices:
            typer.echo("Device list is empty")
            return
        for device in devices:
            typer.echo(_describe(device))
    except AnywakeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("add")
def add_device(
    ctx: typer.Context,
    name: str,
    mac: str,
    host: str | None = typer.Option(None, "--host", help="IP or hostname used for status checks"),
) -> None:
    """Add a device by name and MAC address."""
    try:
        node = _build_node(ctx)
        device = node.add_device(name, mac, host)
        typer.echo(f"Added {_describe(device)}")
    except AnywakeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("remove")
def remove_device(ctx: typer.Context, device: str = typer.Argument(..., help="Device id, MAC or name")) -> None:
    """Delete a device."""
    try:
        node = _build_node(ctx)
        target = node.find_device(device)
        node.remove_device(target.id)
        typer.echo(f"Removed {target.name}")
    except AnywakeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("rename")
def rename_device(ctx: typer.Context, device: str, name: str) -> None:
    """Give a device a new name."""
    try:
        node = _build_node(ctx)
        target = node.find_device(device)
        updated = node.rename_device(target.id, name)
        typer.echo(f"Renamed {target.name} -> {updated.name}")
    except AnywakeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _set_pinned(ctx: typer.Context, device: str, pinned: bool) -> None:
    try:
        node = _build_node(ctx)
        target = node.set_pinned(node.find_device(device).id, pinned)
        typer.echo(f"{'Pinned' if pinned else 'Unpinned'} {target.name}")
        visible = {d.id for d in node.snapshot()}
        if pinned and target.id not in visible:
            typer.echo(
                f"Note: only the first {node.settings.snapshot_limit} pinned devices appear in the widget",
                err=True,
            )
    except AnywakeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("pin")
def pin_device(ctx: typer.Context, device: str) -> None:
    """Pin a device to the widget snapshot."""
    _set_pinned(ctx, device, True)


@app.command("unpin")
def unpin_device(ctx: typer.Context, device: str) -> None:
    """Remove a device from the widget snapshot."""
    _set_pinned(ctx, device, False)


@app.command("snapshot")
def show_snapshot(ctx: typer.Context) -> None:
    """Show the pinned devices a widget would render."""
    try:
        node = _build_node(ctx)
        snapshot = node.snapshot()
        if not snapshot:
            typer.echo("Pinned devices not found")
            return
        for device in snapshot:
            typer.echo(f"{device.id[:8]} {device.name}")
    except AnywakeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("wake")
def wake_device(
    ctx: typer.Context,
    device: str,
    peer: str | None = typer.Option(None, "--peer", help="Forward through this BLE peer (MAC) instead"),
) -> None:
    """Send a wake command to a device, locally or through a peer."""
    try:
        peer_id = peer.upper() if peer else None
        node = _build_node(ctx, forward_to=peer_id)
        target = node.find_device(device)
        if peer_id is not None:
            node.add_link(_ble_link(node.settings, peer_id, peer_id))
        result = asyncio.run(_wake(node, target.id))
    except AnywakeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"Wake {target.name}: {result.outcome.value} (request {result.request_id})")
    if not result.ok:
        raise typer.Exit(code=1)


async def _wake(node: AnywakeNode, device_id: str) -> WakeResult:
    async with node:
        return await node.wake(device_id)


@app.command("status")
def check_status(ctx: typer.Context, device: str | None = typer.Argument(None)) -> None:
    """Probe devices and record whether they are online."""
    try:
        node = _build_node(ctx)
        device_id = node.find_device(device).id if device else None
        statuses = asyncio.run(node.check_status(device_id))
        if not statuses:
            typer.echo("Nothing to check")
            return
        for checked_id, status in statuses.items():
            checked = node.registry.get(checked_id)
            name = checked.name if checked else checked_id
            typer.echo(f"{name}: {status.value}")
    except AnywakeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("sync")
def sync_with_peer(
    ctx: typer.Context,
    peer: str = typer.Argument(..., help="BLE MAC of the companion device"),
    seconds: float = typer.Option(10.0, "--seconds", help="How long to stay connected"),
) -> None:
    """Connect to a companion device, exchange missed changes and serve its wake requests."""
    try:
        node = _build_node(ctx)
        node.add_link(_ble_link(node.settings, peer, peer.upper()))
        asyncio.run(_sync(node, seconds))
    except AnywakeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo(f"Synced {len(node.list_devices())} devices with {peer}")


async def _sync(node: AnywakeNode, seconds: float) -> None:
    async with node:
        if not node.channel.reachable_peers():
            raise TransportConnectError(f"Could not reach {', '.join(node.channel.peers())}")
        await asyncio.sleep(seconds)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
