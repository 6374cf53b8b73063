"""Adapter and scheduler interfaces."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol

from doorctl.core.model import Advertisement, GattCharacteristic, RadioState


class AdapterListener(Protocol):
    """Callbacks an adapter delivers, all on the controller's context."""

    def on_radio_state(self, state: RadioState) -> None: ...

    def on_advertisement(
        self,
        device_id: str,
        advertisement: Advertisement,
        rssi: int,
        handle: Any = None,
    ) -> None: ...

    def on_connected(self, device_id: str) -> None: ...

    def on_connect_failed(self, device_id: str, error: str | None) -> None: ...

    def on_disconnected(self, device_id: str, error: str | None) -> None: ...

    def on_services_discovered(
        self,
        device_id: str,
        services: Sequence[str],
        error: str | None,
    ) -> None: ...

    def on_characteristics_discovered(
        self,
        device_id: str,
        service_uuid: str,
        characteristics: Sequence[GattCharacteristic],
        error: str | None,
    ) -> None: ...

    def on_notify_state_changed(
        self,
        device_id: str,
        char_uuid: str,
        enabled: bool,
        error: str | None,
    ) -> None: ...

    def on_write_complete(self, device_id: str, char_uuid: str, error: str | None) -> None: ...

    def on_value_updated(
        self,
        device_id: str,
        char_uuid: str,
        value: bytes | None,
        error: str | None,
    ) -> None: ...


class RadioAdapter(Protocol):
    def bind(self, listener: AdapterListener) -> None:
        """Register the single listener receiving adapter callbacks."""

    def power_state(self) -> RadioState: ...

    def probe_radio(self) -> None:
        """Re-check the radio; a change is reported through on_radio_state."""

    def scan(self, *, service_filter: Sequence[str] | None, allow_duplicates: bool) -> None: ...

    def stop_scan(self) -> None: ...

    def connect(self, device_id: str, handle: Any = None) -> None: ...

    def disconnect(self, device_id: str) -> None: ...


class GattAdapter(Protocol):
    def discover_services(self, device_id: str, uuids: Sequence[str]) -> None: ...

    def discover_characteristics(
        self,
        device_id: str,
        service_uuid: str,
        uuids: Sequence[str],
    ) -> None: ...

    def write_value(self, device_id: str, char_uuid: str, data: bytes, *, with_ack: bool) -> None: ...

    def set_notify(self, device_id: str, char_uuid: str, enabled: bool) -> None: ...


class BLEAdapter(RadioAdapter, GattAdapter, Protocol):
    """Both halves of the platform stack, as one object."""


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle: ...
