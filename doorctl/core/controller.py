"""Controller owning the registry, the session, and the event log.

Every adapter callback and every user request enters through this object and
is handled to completion before the next one; the adapter and scheduler are
expected to deliver callbacks on one context (an asyncio loop in practice).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any

from doorctl.core.device_match import device_matches_target, name_matches_target, resolve_display_name
from doorctl.core.errors import AdapterError
from doorctl.core.event_log import EventLog
from doorctl.core.lifecycle import (
    CharacteristicsDiscovered,
    Connect,
    ConnectFailed,
    ConnectRequested,
    Connected,
    Disconnect,
    DisconnectRequested,
    Disconnected,
    DiscoverCharacteristics,
    DiscoverServices,
    Effect,
    Event,
    Log,
    ScanRestarted,
    ServicesDiscovered,
    StartScan,
    StopScan,
    Subscribe,
    transition,
)
from doorctl.core.model import (
    SWEEP_INTERVAL_S,
    Advertisement,
    ControllerSnapshot,
    DiscoveredDevice,
    GattCharacteristic,
    RadioState,
    Session,
    Settings,
    normalize_uuid,
)
from doorctl.core.registry import DeviceRegistry
from doorctl.core.session import auth_command, demux_notification, encode_command
from doorctl.transports.base import BLEAdapter, Scheduler, TimerHandle

LOGGER = logging.getLogger(__name__)

_RADIO_MESSAGES = {
    RadioState.OFF: "Bluetooth is OFF",
    RadioState.UNAUTHORIZED: "Bluetooth unauthorized",
    RadioState.UNSUPPORTED: "Bluetooth unsupported on this device",
    RadioState.RESETTING: "Bluetooth resetting…",
    RadioState.UNKNOWN: "Bluetooth state unknown",
}


class DoorController:
    def __init__(
        self,
        adapter: BLEAdapter,
        scheduler: Scheduler,
        *,
        settings: Callable[[], Settings] | None = None,
        registry: DeviceRegistry | None = None,
        event_log: EventLog | None = None,
    ) -> None:
        self.adapter = adapter
        self.scheduler = scheduler
        self._settings = settings or Settings
        self.registry = registry or DeviceRegistry()
        self.event_log = event_log or EventLog(self.settings.event_log_size)
        self.session = Session()
        self.scanning = False
        self._sweep_timer: TimerHandle | None = None
        self._auth_timer: TimerHandle | None = None
        self._auth_done = False
        self._running = False
        self._closed = False
        adapter.bind(self)

    @property
    def settings(self) -> Settings:
        return self._settings()

    # Lifecycle of the controller itself

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._schedule_sweep()
        if self.adapter.power_state() is RadioState.ON and not self.scanning:
            self.start_scan()

    def close(self) -> None:
        self._running = False
        self._closed = True
        self._cancel_timer("_sweep_timer")
        self._cancel_timer("_auth_timer")
        if self.session.peripheral is not None:
            self.disconnect()
        if self.scanning:
            self.stop_scan()

    # Display-layer entry points

    def snapshot(self) -> ControllerSnapshot:
        return ControllerSnapshot(
            devices=self.registry.snapshot(),
            scanning=self.scanning,
            radio_state=self.adapter.power_state(),
            session=self.session,
            events=self.event_log.entries(),
        )

    def target_devices(self) -> tuple[DiscoveredDevice, ...]:
        target_name = self.settings.target_name
        return self.registry.snapshot(lambda device: device_matches_target(device, target_name))

    def start_scan(self) -> None:
        if self._closed:
            return
        if self.adapter.power_state() is not RadioState.ON:
            LOGGER.debug("Scan request ignored; radio is %s", self.adapter.power_state().value)
            try:
                self.adapter.probe_radio()
            except AdapterError as exc:
                LOGGER.debug("Radio probe not started: %s", exc)
            return
        self.registry.clear()
        self.scanning = True
        self._log(f'Scanning (no filter)… target name = "{self.settings.target_name}"')
        try:
            self.adapter.scan(service_filter=None, allow_duplicates=True)
        except AdapterError as exc:
            self.scanning = False
            self._log(f"Scan failed: {exc}")
            return
        self.dispatch(ScanRestarted())

    def stop_scan(self) -> None:
        self.scanning = False
        try:
            self.adapter.stop_scan()
        except AdapterError as exc:
            self._log(f"Stop scan failed: {exc}")

    def connect(self, device_id: str) -> bool:
        device = self.registry.get(device_id)
        if device is None:
            self._log(f"Unknown device {device_id}; scan again before connecting")
            return False
        self.dispatch(ConnectRequested(device.id, device.display_name, device.handle))
        return self.session.peripheral == device.id

    def disconnect(self) -> None:
        self.dispatch(DisconnectRequested())

    def send(self, command: str) -> bool:
        session = self.session
        if not session.is_ready or session.write_channel is None or session.peripheral is None:
            self._log(f'Not ready; dropped "{command}"')
            return False
        self._log(f"→ {command}")
        try:
            self.adapter.write_value(
                session.peripheral,
                session.write_channel.uuid,
                encode_command(command),
                with_ack=True,
            )
        except AdapterError as exc:
            self._log(f"Write error: {exc}")
            return False
        return True

    # Lifecycle event ingestion

    def dispatch(self, event: Event) -> Session:
        was_ready = self.session.is_ready
        result = transition(self.session, event, self.settings)
        if result.session is self.session and not result.effects:
            LOGGER.debug("Ignored %r in state %s", event, self.session.state.value)
            return self.session
        self.session = result.session
        for effect in result.effects:
            self._apply(effect)
        self._after_transition(was_ready)
        return self.session

    def _apply(self, effect: Effect) -> None:
        if isinstance(effect, Log):
            self._log(effect.message)
        elif isinstance(effect, StopScan):
            self.stop_scan()
        elif isinstance(effect, StartScan):
            self.start_scan()
        else:
            try:
                self._apply_adapter_effect(effect)
            except AdapterError as exc:
                self._log(f"Adapter error: {exc}")

    def _apply_adapter_effect(self, effect: Effect) -> None:
        if isinstance(effect, Connect):
            self.adapter.connect(effect.device_id, effect.handle)
        elif isinstance(effect, Disconnect):
            self.adapter.disconnect(effect.device_id)
        elif isinstance(effect, DiscoverServices):
            self.adapter.discover_services(effect.device_id, effect.uuids)
        elif isinstance(effect, DiscoverCharacteristics):
            self.adapter.discover_characteristics(effect.device_id, effect.service_uuid, effect.uuids)
        elif isinstance(effect, Subscribe):
            self.adapter.set_notify(effect.device_id, effect.characteristic.uuid, True)
        else:
            raise TypeError(f"Unsupported effect {effect!r}")

    def _after_transition(self, was_ready: bool) -> None:
        if self.session.peripheral is None:
            self._cancel_timer("_auth_timer")
            self._auth_done = False
            return
        if not was_ready and self.session.is_ready:
            self._on_ready()

    # Auto-authentication

    def _on_ready(self) -> None:
        settings = self.settings
        if not settings.auto_auth or self._auth_done or self._auth_timer is not None:
            return
        self._auth_done = True
        device_id = self.session.peripheral
        self._auth_timer = self.scheduler.call_later(
            settings.auth_delay_s,
            lambda: self._fire_auto_auth(device_id),
        )

    def _fire_auto_auth(self, device_id: str | None) -> None:
        self._auth_timer = None
        if self.session.peripheral != device_id or not self.session.is_ready:
            LOGGER.debug("Auto AUTH skipped; session for %s is gone", device_id)
            return
        self.send(auth_command(self.settings.pin))

    # Adapter callbacks

    def on_radio_state(self, state: RadioState) -> None:
        if state is RadioState.ON:
            self.start_scan()
            return
        self.scanning = False
        self._log(_RADIO_MESSAGES[state])

    def on_advertisement(
        self,
        device_id: str,
        advertisement: Advertisement,
        rssi: int,
        handle: Any = None,
    ) -> None:
        name = resolve_display_name(advertisement)
        self.registry.upsert(device_id, name, rssi, self.scheduler.now(), handle=handle)

        settings = self.settings
        if (
            settings.auto_connect
            and self.session.peripheral is None
            and name_matches_target(name, settings.target_name)
        ):
            self._log(f"Match {name}. Auto-connecting…")
            self.dispatch(ConnectRequested(device_id, name, handle))

    def on_connected(self, device_id: str) -> None:
        self.dispatch(Connected(device_id))

    def on_connect_failed(self, device_id: str, error: str | None) -> None:
        self.dispatch(ConnectFailed(device_id, error))

    def on_disconnected(self, device_id: str, error: str | None) -> None:
        self.dispatch(Disconnected(device_id, error))

    def on_services_discovered(
        self,
        device_id: str,
        services: Sequence[str],
        error: str | None,
    ) -> None:
        self.dispatch(ServicesDiscovered(device_id, tuple(services), error))

    def on_characteristics_discovered(
        self,
        device_id: str,
        service_uuid: str,
        characteristics: Sequence[GattCharacteristic],
        error: str | None,
    ) -> None:
        self.dispatch(
            CharacteristicsDiscovered(device_id, service_uuid, tuple(characteristics), error)
        )

    def on_notify_state_changed(
        self,
        device_id: str,
        char_uuid: str,
        enabled: bool,
        error: str | None,
    ) -> None:
        if self._is_stale(device_id):
            return
        if error:
            self._log(f"Notify state error: {error}")
            return
        LOGGER.debug("Notifications %s on %s", "enabled" if enabled else "disabled", char_uuid)

    def on_write_complete(self, device_id: str, char_uuid: str, error: str | None) -> None:
        if self._is_stale(device_id):
            return
        if error:
            self._log(f"Write error: {error}")
        else:
            self._log("✓ Write ACK")

    def on_value_updated(
        self,
        device_id: str,
        char_uuid: str,
        value: bytes | None,
        error: str | None,
    ) -> None:
        notify_channel = self.session.notify_channel
        if (
            self._is_stale(device_id)
            or notify_channel is None
            or normalize_uuid(char_uuid) != normalize_uuid(notify_channel.uuid)
        ):
            LOGGER.debug("Dropping notification from %s on %s", device_id, char_uuid)
            return
        if error:
            self._log(f"Notify error: {error}")
            return
        if value is None:
            return

        reassembly = demux_notification(bytes(value))
        for line in reassembly.lines:
            self._log(f"← {line}")
        if reassembly.last_message is not None:
            self.session = replace(self.session, last_message=reassembly.last_message)

    # Helpers

    def _is_stale(self, device_id: str) -> bool:
        if self.session.peripheral != device_id:
            LOGGER.debug("Ignoring callback for %s; bound to %s", device_id, self.session.peripheral)
            return True
        return False

    def _log(self, message: str) -> None:
        self.event_log.append(message)

    def _schedule_sweep(self) -> None:
        self._sweep_timer = self.scheduler.call_later(SWEEP_INTERVAL_S, self._on_sweep_timer)

    def _on_sweep_timer(self) -> None:
        self._sweep_timer = None
        if not self._running:
            return
        self.registry.sweep(self.scheduler.now())
        self._schedule_sweep()

    def _cancel_timer(self, attribute: str) -> None:
        timer = getattr(self, attribute)
        if timer is not None:
            timer.cancel()
            setattr(self, attribute, None)
