from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from anywake import cli
from anywake.core.service import AnywakeNode
from anywake.transports.loopback import LoopbackWire

from conftest import FakeProbe, FakeWake

runner = CliRunner()


@pytest.fixture
def wake(monkeypatch: pytest.MonkeyPatch) -> FakeWake:
    fake = FakeWake()

    def node_factory(settings):
        return AnywakeNode(settings, wake_transport=fake, probe=FakeProbe({"10.0.0.2": True}))

    monkeypatch.setattr(cli, "AnywakeNode", node_factory)
    return fake


def _add(name: str, mac: str, *extra: str) -> None:
    result = runner.invoke(cli.app, ["add", name, mac, *extra])
    assert result.exit_code == 0, result.output


def test_add_and_list_persist_between_runs(wake: FakeWake, tmp_path: Path) -> None:
    _add("Desktop", "aa:bb:cc:dd:ee:ff", "--host", "10.0.0.2")
    _add("NAS", "11:22:33:44:55:66")

    result = runner.invoke(cli.app, ["list"])
    assert result.exit_code == 0
    assert "Desktop AA:BB:CC:DD:EE:FF 10.0.0.2 [unknown]" in result.stdout
    assert "NAS 11:22:33:44:55:66 - [unknown]" in result.stdout
    assert (tmp_path / "data" / "anywake" / "devices.yaml").exists()


def test_empty_list(wake: FakeWake) -> None:
    result = runner.invoke(cli.app, ["list"])
    assert result.exit_code == 0
    assert "Device list is empty" in result.stdout


def test_rename_remove_and_pin(wake: FakeWake) -> None:
    _add("Desktop", "AA:BB:CC:DD:EE:FF")

    result = runner.invoke(cli.app, ["rename", "desk", "Office PC"])
    assert result.exit_code == 0
    assert "Renamed Desktop -> Office PC" in result.stdout

    result = runner.invoke(cli.app, ["snapshot"])
    assert "Pinned devices not found" in result.stdout

    result = runner.invoke(cli.app, ["pin", "Office PC"])
    assert result.exit_code == 0
    result = runner.invoke(cli.app, ["snapshot"])
    assert "Office PC" in result.stdout

    result = runner.invoke(cli.app, ["remove", "AA:BB:CC:DD:EE:FF"])
    assert result.exit_code == 0
    assert "Removed Office PC" in result.stdout
    assert "Device list is empty" in runner.invoke(cli.app, ["list"]).stdout


def test_pin_beyond_snapshot_limit_prints_note(wake: FakeWake) -> None:
    for index in range(4):
        _add(f"Device {index}", f"AA:BB:CC:DD:EE:0{index}")
        result = runner.invoke(cli.app, ["pin", f"Device {index}"])
        assert result.exit_code == 0

    assert "only the first 3 pinned devices" in result.stderr
    snapshot = runner.invoke(cli.app, ["snapshot"]).stdout
    assert "Device 0" in snapshot
    assert "Device 3" not in snapshot


def test_wake_command_reports_outcome(wake: FakeWake) -> None:
    _add("Desktop", "AA:BB:CC:DD:EE:FF")

    result = runner.invoke(cli.app, ["wake", "Desktop"])
    assert result.exit_code == 0
    assert "Wake Desktop: sent (request " in result.stdout
    assert [address.mac for address in wake.calls] == ["AA:BB:CC:DD:EE:FF"]


def test_failed_wake_exits_nonzero(wake: FakeWake) -> None:
    _add("Desktop", "AA:BB:CC:DD:EE:FF")
    wake.answers = [False]

    result = runner.invoke(cli.app, ["wake", "Desktop"])
    assert result.exit_code == 1
    assert "Wake Desktop: capability_failed" in result.stdout


def test_wake_through_unreachable_peer(wake: FakeWake, monkeypatch: pytest.MonkeyPatch) -> None:
    _add("Desktop", "AA:BB:CC:DD:EE:FF")
    monkeypatch.setattr(cli, "_ble_link", lambda settings, mac, peer_id: LoopbackWire("me", peer_id).a)

    result = runner.invoke(cli.app, ["wake", "Desktop", "--peer", "aa:bb:cc:00:11:22"])
    assert result.exit_code == 1
    assert "Wake Desktop: unreachable_peer" in result.stdout
    assert wake.calls == []


def test_status_command(wake: FakeWake) -> None:
    _add("Desktop", "AA:BB:CC:DD:EE:FF", "--host", "10.0.0.2")
    _add("Laptop", "AA:BB:CC:DD:EE:01")

    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 0
    assert "Desktop: online" in result.stdout
    assert "Laptop: unknown" in result.stdout
    assert "[online]" in runner.invoke(cli.app, ["list"]).stdout


def test_sync_fails_cleanly_when_peer_is_out_of_range(wake: FakeWake, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "_ble_link", lambda settings, mac, peer_id: LoopbackWire("me", peer_id).a)

    result = runner.invoke(cli.app, ["sync", "AA:BB:CC:00:11:22", "--seconds", "0"])
    assert result.exit_code == 1
    assert "Error: Could not reach AA:BB:CC:00:11:22" in result.stderr


def test_unknown_device_error_is_clean(wake: FakeWake) -> None:
    result = runner.invoke(cli.app, ["rename", "nothing", "Other"])
    assert result.exit_code == 1
    assert "Error: No device found matching 'nothing'" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_invalid_mac_is_rejected(wake: FakeWake) -> None:
    result = runner.invoke(cli.app, ["add", "Desktop", "not-a-mac"])
    assert result.exit_code == 1
    assert "Error: Invalid MAC address 'not-a-mac'" in result.stderr


def test_runtime_warning_is_printed(tmp_path: Path) -> None:
    config = tmp_path / "cfg" / "anywake" / "config.yaml"
    config.parent.mkdir(parents=True)
    config.write_text('wake_command: [anywake-test-missing-tool, "{mac}"]\n', encoding="utf-8")

    result = runner.invoke(cli.app, ["list"])
    assert result.exit_code == 0
    assert "Warning: Wake command 'anywake-test-missing-tool' not found on PATH" in result.stderr
