"""Stable public API for building tooling on top of doorctl.

This module is the supported integration surface for display layers (CLI,
GUI/TUI, services). It wires settings, the BLE adapter, and the controller
together and hands out immutable snapshots only.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from doorctl.core.errors import (
    AdapterError,
    AdapterUnavailableError,
    DoorctlError,
    SessionTimeoutError,
    SettingsLoadError,
    SettingsValidationError,
)
from doorctl.core.controller import DoorController
from doorctl.core.model import (
    ControllerSnapshot,
    DiscoveredDevice,
    RadioState,
    Session,
    SessionState,
    Settings,
)
from doorctl.core.session import COMMANDS, auth_command
from doorctl.core.settings import SettingsStore
from doorctl.transports.base import BLEAdapter, Scheduler
from doorctl.transports.ble_gatt import BleakAdapter
from doorctl.transports.scheduler import LoopScheduler

__all__ = [
    "DoorctlError",
    "SettingsLoadError",
    "SettingsValidationError",
    "SessionTimeoutError",
    "AdapterError",
    "AdapterUnavailableError",
    "ControllerSnapshot",
    "DiscoveredDevice",
    "RadioState",
    "Session",
    "SessionState",
    "Settings",
    "SettingsStore",
    "COMMANDS",
    "auth_command",
    "Client",
]


class Client:
    """Public client for interacting with one door-lock peripheral.

    A `Client` must be created inside a running event loop; all of its
    methods, and every adapter callback, run on that loop.
    """

    def __init__(
        self,
        *,
        settings: SettingsStore | Settings | None = None,
        adapter: BLEAdapter | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.settings = settings if isinstance(settings, SettingsStore) else SettingsStore(settings)
        self._adapter = adapter or BleakAdapter(
            connect_timeout_s=lambda: self.settings.current.connect_timeout_s
        )
        self._controller = DoorController(
            self._adapter,
            scheduler or LoopScheduler(),
            settings=self.settings,
        )

    async def __aenter__(self) -> Client:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def open(self) -> None:
        opener = getattr(self._adapter, "open", None)
        if opener is not None:
            await opener()
        self._controller.start()

    async def close(self) -> None:
        self._controller.close()
        closer = getattr(self._adapter, "aclose", None)
        if closer is not None:
            await closer()

    def snapshot(self) -> ControllerSnapshot:
        return self._controller.snapshot()

    def devices(self, *, target_only: bool = False) -> tuple[DiscoveredDevice, ...]:
        if target_only:
            return self._controller.target_devices()
        return self._controller.registry.snapshot()

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[], None]:
        return self._controller.event_log.subscribe(listener)

    def start_scan(self) -> None:
        self._controller.start_scan()

    def stop_scan(self) -> None:
        self._controller.stop_scan()

    def connect(self, device_id: str) -> bool:
        return self._controller.connect(device_id)

    def disconnect(self) -> None:
        self._controller.disconnect()

    def send(self, command: str) -> bool:
        return self._controller.send(command)

    async def wait_until(
        self,
        predicate: Callable[[ControllerSnapshot], bool],
        *,
        timeout_s: float,
        poll_s: float = 0.05,
        description: str = "condition",
    ) -> ControllerSnapshot:
        deadline = time.monotonic() + timeout_s
        snapshot = self.snapshot()
        while not predicate(snapshot):
            if time.monotonic() >= deadline:
                raise SessionTimeoutError(
                    f"Timed out after {timeout_s:g}s waiting for {description} "
                    f"(state={snapshot.state.value})"
                )
            await asyncio.sleep(poll_s)
            snapshot = self.snapshot()
        return snapshot

    async def wait_ready(self, *, timeout_s: float) -> ControllerSnapshot:
        return await self.wait_until(
            lambda snapshot: snapshot.session.is_ready,
            timeout_s=timeout_s,
            description="a ready session",
        )
