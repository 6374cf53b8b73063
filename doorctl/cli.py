"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

import typer

from doorctl.api import Client
from doorctl.core.errors import DoorctlError
from doorctl.core.model import SessionState
from doorctl.core.session import OPEN
from doorctl.core.settings import SETTINGS_KEYS, SettingsStore

app = typer.Typer(help="Bluetooth LE door opener control over Nordic UART")
config_app = typer.Typer(help="Show or change persisted settings")
app.add_typer(config_app, name="config")

_RX_PREFIX = "← "


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_store(
    target: str | None = None,
    pin: str | None = None,
    **overrides: Any,
) -> SettingsStore:
    store = SettingsStore()
    changes = {key: value for key, value in overrides.items() if value is not None}
    if target is not None:
        changes["target_name"] = target
    if pin is not None:
        changes["pin"] = pin
    if changes:
        store.update(**changes)
    return store


def _run(coro: Coroutine[Any, Any, None]) -> None:
    try:
        asyncio.run(coro)
    except DoorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        typer.echo("Interrupted", err=True)


@app.command("scan")
def scan(
    duration: float = typer.Option(10.0, "--duration", "-d", help="Seconds to scan"),
    all_devices: bool = typer.Option(False, "--all", help="Show every device, not only target matches"),
    target: str | None = typer.Option(None, "--target", help="Target device name"),
) -> None:
    """Scan for nearby devices and list them, strongest signal first."""

    async def _scan() -> None:
        store = _build_store(target, auto_connect=False)
        async with Client(settings=store) as client:
            await asyncio.sleep(duration)
            devices = client.devices(target_only=not all_devices)

        if not devices:
            typer.echo("No devices found")
            return
        for device in devices:
            typer.echo(f"{device.id} {device.display_name} {device.signal_strength} dBm")

    _run(_scan())


@app.command("monitor")
def monitor(
    target: str | None = typer.Option(None, "--target", help="Target device name"),
    pin: str | None = typer.Option(None, "--pin", help="PIN for AUTH"),
    auto_auth: bool | None = typer.Option(None, "--auto-auth/--no-auto-auth", help="Send AUTH once ready"),
) -> None:
    """Stay connected to the target, reconnecting forever and echoing events."""

    async def _monitor() -> None:
        store = _build_store(target, pin, auto_connect=True, auto_auth=auto_auth)
        if not store.current.target_name:
            raise DoorctlError("No target device name configured. Use --target or 'doorctl config set target_name NAME'.")
        async with Client(settings=store) as client:
            client.subscribe(typer.echo)
            await asyncio.Event().wait()

    _run(_monitor())


def _send_commands(
    commands: list[str],
    *,
    target: str | None,
    pin: str | None,
    timeout_s: float,
    wait_s: float,
) -> None:
    async def _send() -> None:
        store = _build_store(target, pin, auto_connect=True)
        if not store.current.target_name:
            raise DoorctlError("No target device name configured. Use --target or 'doorctl config set target_name NAME'.")

        received: list[str] = []

        def _collect(line: str) -> None:
            if line.startswith(_RX_PREFIX):
                received.append(line[len(_RX_PREFIX):])

        async with Client(settings=store) as client:
            client.subscribe(_collect)
            snapshot = await client.wait_ready(timeout_s=timeout_s)
            if store.current.auto_auth:
                await asyncio.sleep(store.current.auth_delay_s + 0.2)
            for command in commands:
                if not client.send(command):
                    raise DoorctlError(f"Could not send '{command}': session is no longer ready")
                typer.echo(f"Sent {command} to {snapshot.session.peripheral}")
            await asyncio.sleep(wait_s)
            if client.snapshot().state is not SessionState.READY:
                typer.echo("Warning: connection dropped before all responses arrived", err=True)

        for line in received:
            typer.echo(line)

    _run(_send())


@app.command("send")
def send(
    commands: list[str] = typer.Argument(..., help="Commands such as OPEN, STATUS, PING"),
    target: str | None = typer.Option(None, "--target", help="Target device name"),
    pin: str | None = typer.Option(None, "--pin", help="PIN for AUTH"),
    timeout: float = typer.Option(15.0, "--timeout", help="Seconds to wait for a ready session"),
    wait: float = typer.Option(2.0, "--wait", help="Seconds to collect responses"),
) -> None:
    """Connect to the target, send each command, and print the replies."""
    _send_commands(commands, target=target, pin=pin, timeout_s=timeout, wait_s=wait)


@app.command("open")
def open_door(
    target: str | None = typer.Option(None, "--target", help="Target device name"),
    pin: str | None = typer.Option(None, "--pin", help="PIN for AUTH"),
    timeout: float = typer.Option(15.0, "--timeout", help="Seconds to wait for a ready session"),
    wait: float = typer.Option(2.0, "--wait", help="Seconds to collect responses"),
) -> None:
    """Shortcut for 'send OPEN'."""
    _send_commands([OPEN], target=target, pin=pin, timeout_s=timeout, wait_s=wait)


@config_app.command("show")
def config_show() -> None:
    """Print the effective settings."""
    try:
        store = SettingsStore()
    except DoorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    for key in SETTINGS_KEYS:
        typer.echo(f"{key}: {getattr(store.current, key)}")


@config_app.command("set")
def config_set(key: str, value: str) -> None:
    """Persist one setting, e.g. 'config set target_name DoorLock'."""
    try:
        store = SettingsStore()
        if key not in SETTINGS_KEYS:
            raise DoorctlError(f"Unknown setting '{key}'. Known: {', '.join(SETTINGS_KEYS)}")
        store.update(**{key: value})
        path = store.save()
    except DoorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo(f"Saved {key}={getattr(store.current, key)} to {path}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
