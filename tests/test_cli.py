from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from doorctl import cli
from doorctl.core.errors import SessionTimeoutError
from doorctl.core.model import ControllerSnapshot, DiscoveredDevice, RadioState, Session, SessionState


class FakeClient:
    instances: list["FakeClient"] = []
    ready = True

    def __init__(self, *, settings) -> None:
        self.settings = settings
        self.sent: list[str] = []
        self.listeners = []
        FakeClient.instances.append(self)

    async def __aenter__(self) -> "FakeClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    def devices(self, *, target_only: bool = False):
        devices = (
            DiscoveredDevice(id="AA:BB", display_name="DoorLock", signal_strength=-48, last_seen=0.0),
            DiscoveredDevice(id="CC:DD", display_name="Speaker", signal_strength=-70, last_seen=0.0),
        )
        if target_only:
            return tuple(d for d in devices if d.display_name.lower() == self.settings.current.target_name.lower())
        return devices

    def subscribe(self, listener):
        self.listeners.append(listener)
        return lambda: None

    def snapshot(self) -> ControllerSnapshot:
        return ControllerSnapshot(
            devices=(),
            scanning=False,
            radio_state=RadioState.ON,
            session=Session(peripheral="AA:BB", state=SessionState.READY),
            events=(),
        )

    async def wait_ready(self, *, timeout_s: float) -> ControllerSnapshot:
        if not FakeClient.ready:
            raise SessionTimeoutError(f"Timed out after {timeout_s:g}s waiting for a ready session (state=idle)")
        return self.snapshot()

    def send(self, command: str) -> bool:
        self.sent.append(command)
        for listener in self.listeners:
            listener(f"→ {command}")
            listener(f"← ACK {command}")
        return True


runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setattr(cli, "Client", FakeClient)
    monkeypatch.setattr(cli.asyncio, "sleep", _no_sleep)
    FakeClient.instances = []
    FakeClient.ready = True
    return tmp_path / "cfg"


async def _no_sleep(_: float) -> None:
    return None


def test_scan_lists_target_matches_only_by_default() -> None:
    result = runner.invoke(cli.app, ["scan", "--target", "doorlock", "--duration", "0"])
    assert result.exit_code == 0
    assert "AA:BB DoorLock -48 dBm" in result.stdout
    assert "Speaker" not in result.stdout
    assert FakeClient.instances[0].settings.current.auto_connect is False


def test_scan_all_lists_every_device() -> None:
    result = runner.invoke(cli.app, ["scan", "--all", "--duration", "0"])
    assert result.exit_code == 0
    assert "CC:DD Speaker -70 dBm" in result.stdout


def test_scan_without_matches() -> None:
    result = runner.invoke(cli.app, ["scan", "--duration", "0"])
    assert result.exit_code == 0
    assert "No devices found" in result.stdout


def test_send_prints_replies() -> None:
    result = runner.invoke(cli.app, ["send", "STATUS", "PING", "--target", "DoorLock", "--pin", "1234"])
    assert result.exit_code == 0
    assert "Sent STATUS to AA:BB" in result.stdout
    assert "ACK PING" in result.stdout
    client = FakeClient.instances[0]
    assert client.sent == ["STATUS", "PING"]
    assert client.settings.current.pin == "1234"


def test_open_command_sends_open() -> None:
    result = runner.invoke(cli.app, ["open", "--target", "DoorLock"])
    assert result.exit_code == 0
    assert FakeClient.instances[0].sent == ["OPEN"]


def test_send_requires_target_name() -> None:
    result = runner.invoke(cli.app, ["send", "OPEN"])
    assert result.exit_code == 1
    assert "No target device name configured" in result.stderr


def test_send_timeout_error_is_clean() -> None:
    FakeClient.ready = False
    result = runner.invoke(cli.app, ["send", "OPEN", "--target", "DoorLock", "--timeout", "1"])
    assert result.exit_code == 1
    assert "Error: Timed out after 1s waiting for a ready session" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_config_set_and_show(isolated: Path) -> None:
    result = runner.invoke(cli.app, ["config", "set", "target_name", "DoorLock"])
    assert result.exit_code == 0
    assert "Saved target_name=DoorLock" in result.stdout
    assert (isolated / "doorctl" / "config.yaml").exists()

    result = runner.invoke(cli.app, ["config", "set", "pin", "0042"])
    assert result.exit_code == 0

    result = runner.invoke(cli.app, ["config", "show"])
    assert result.exit_code == 0
    assert "target_name: DoorLock" in result.stdout
    assert "pin: 0042" in result.stdout


def test_config_set_rejects_unknown_key() -> None:
    result = runner.invoke(cli.app, ["config", "set", "colour", "blue"])
    assert result.exit_code == 1
    assert "Unknown setting 'colour'" in result.stderr


def test_config_set_rejects_bad_value() -> None:
    result = runner.invoke(cli.app, ["config", "set", "auto_auth", "sometimes"])
    assert result.exit_code == 1
    assert "Error: settings.auto_auth must be boolean true/false" in result.stderr
