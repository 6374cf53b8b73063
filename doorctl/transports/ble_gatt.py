"""BLE adapter implementation on top of bleak.

Each request from the controller starts a task on the event loop; every
outcome, failures included, comes back through the bound listener on that
same loop. Results are never delivered synchronously from inside a request.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Sequence
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from doorctl.core.errors import AdapterUnavailableError
from doorctl.core.model import Advertisement, GattCharacteristic, RadioState, normalize_uuid
from doorctl.transports.base import AdapterListener

LOGGER = logging.getLogger(__name__)

_RADIO_ERROR_HINTS = (
    (("not powered", "no powered", "powered off", "poweredoff"), RadioState.OFF),
    (("not authorized", "unauthorized", "denied"), RadioState.UNAUTHORIZED),
    (("no bluetooth adapters", "not supported", "unsupported"), RadioState.UNSUPPORTED),
    (("resetting",), RadioState.RESETTING),
)


def radio_state_from_error(exc: BaseException) -> RadioState:
    message = str(exc).lower()
    for hints, state in _RADIO_ERROR_HINTS:
        if any(hint in message for hint in hints):
            return state
    return RadioState.UNKNOWN


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class BleakAdapter:
    def __init__(
        self,
        *,
        connect_timeout_s: float | Callable[[], float] = 10.0,
        radio_probe_interval_s: float = 2.0,
    ) -> None:
        self._connect_timeout_s = connect_timeout_s
        self._radio_probe_interval_s = radio_probe_interval_s
        self._listener: AdapterListener | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._power = RadioState.UNKNOWN
        self._scanner: BleakScanner | None = None
        self._scan_task: asyncio.Task[None] | None = None
        self._radio_watch: asyncio.Task[None] | None = None
        self._clients: dict[str, BleakClient] = {}
        self._connecting: dict[str, asyncio.Task[None]] = {}
        self._teardown: set[asyncio.Task[None]] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    # Lifecycle

    def bind(self, listener: AdapterListener) -> None:
        self._listener = listener

    async def open(self) -> RadioState:
        """Attach to the running loop and probe the radio."""
        self._loop = asyncio.get_running_loop()
        await self._probe()
        return self._power

    async def aclose(self) -> None:
        # Disconnects and scanner stops already requested must still run.
        if self._teardown:
            await asyncio.gather(*self._teardown, return_exceptions=True)
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._scanner is not None:
            scanner, self._scanner = self._scanner, None
            try:
                await scanner.stop()
            except BleakError as exc:
                LOGGER.debug("Scanner stop during close failed: %s", exc)
        for device_id, client in list(self._clients.items()):
            self._clients.pop(device_id, None)
            try:
                await client.disconnect()
            except (BleakError, OSError) as exc:
                LOGGER.debug("Disconnect of %s during close failed: %s", device_id, exc)

    def power_state(self) -> RadioState:
        return self._power

    # Radio

    def probe_radio(self) -> None:
        """Re-check the radio now; an ON result arrives as on_radio_state."""
        if self._radio_watch is not None and not self._radio_watch.done():
            return
        self._radio_watch = self._spawn(self._watch_radio(delay_s=0.0))

    def scan(self, *, service_filter: Sequence[str] | None, allow_duplicates: bool) -> None:
        self._cancel_scan_task()
        self._scan_task = self._spawn(self._scan(service_filter, allow_duplicates))

    def stop_scan(self) -> None:
        self._cancel_scan_task()
        if self._scanner is None:
            return
        scanner, self._scanner = self._scanner, None
        self._spawn_teardown(self._stop_scanner(scanner))

    def connect(self, device_id: str, handle: Any = None) -> None:
        task = self._spawn(self._connect(device_id, handle))
        self._connecting[device_id] = task

    def disconnect(self, device_id: str) -> None:
        pending = self._connecting.get(device_id)
        if pending is not None and not pending.done():
            pending.cancel()
            return
        client = self._clients.pop(device_id, None)
        if client is None:
            LOGGER.debug("Disconnect requested for %s with no client", device_id)
            return
        self._spawn_teardown(self._disconnect(device_id, client))

    # GATT

    def discover_services(self, device_id: str, uuids: Sequence[str]) -> None:
        wanted = {normalize_uuid(uuid) for uuid in uuids}
        client = self._clients.get(device_id)
        if client is None:
            self._deliver(self._require_listener().on_services_discovered, device_id, (), "not connected")
            return
        try:
            found = tuple(
                normalize_uuid(service.uuid)
                for service in client.services
                if not wanted or normalize_uuid(service.uuid) in wanted
            )
        except BleakError as exc:
            self._deliver(self._require_listener().on_services_discovered, device_id, (), _describe(exc))
            return
        self._deliver(self._require_listener().on_services_discovered, device_id, found, None)

    def discover_characteristics(
        self,
        device_id: str,
        service_uuid: str,
        uuids: Sequence[str],
    ) -> None:
        listener = self._require_listener()
        wanted = {normalize_uuid(uuid) for uuid in uuids}
        client = self._clients.get(device_id)
        if client is None:
            self._deliver(listener.on_characteristics_discovered, device_id, service_uuid, (), "not connected")
            return
        try:
            service = client.services.get_service(service_uuid)
        except BleakError as exc:
            self._deliver(listener.on_characteristics_discovered, device_id, service_uuid, (), _describe(exc))
            return
        if service is None:
            self._deliver(
                listener.on_characteristics_discovered,
                device_id,
                service_uuid,
                (),
                f"service {service_uuid} not found",
            )
            return
        characteristics = tuple(
            GattCharacteristic(
                uuid=normalize_uuid(char.uuid),
                service_uuid=normalize_uuid(service_uuid),
                properties=frozenset(char.properties),
            )
            for char in service.characteristics
            if not wanted or normalize_uuid(char.uuid) in wanted
        )
        self._deliver(listener.on_characteristics_discovered, device_id, service_uuid, characteristics, None)

    def write_value(self, device_id: str, char_uuid: str, data: bytes, *, with_ack: bool) -> None:
        self._spawn(self._write(device_id, char_uuid, data, with_ack))

    def set_notify(self, device_id: str, char_uuid: str, enabled: bool) -> None:
        self._spawn(self._set_notify(device_id, char_uuid, enabled))

    # Coroutines

    async def _scan(self, service_filter: Sequence[str] | None, allow_duplicates: bool) -> None:
        if self._scanner is not None:
            scanner, self._scanner = self._scanner, None
            await self._stop_scanner(scanner)
        scanner = BleakScanner(
            detection_callback=self._on_detection,
            service_uuids=list(service_filter) if service_filter else None,
            bluez={"filters": {"DuplicateData": allow_duplicates}},
        )
        try:
            await scanner.start()
        except asyncio.CancelledError:
            await self._stop_scanner(scanner)
            raise
        except BleakError as exc:
            LOGGER.warning("Scan start failed: %s", exc)
            self._radio_lost(radio_state_from_error(exc))
            return
        self._scanner = scanner

    async def _probe(self) -> None:
        probe = BleakScanner()
        try:
            await probe.start()
            await probe.stop()
        except BleakError as exc:
            state = radio_state_from_error(exc)
            log = LOGGER.debug if state is self._power else LOGGER.warning
            log("Bluetooth probe failed: %s", exc)
            self._radio_lost(state)
        else:
            self._set_power(RadioState.ON)

    async def _watch_radio(self, *, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        await self._probe()
        while self._power is not RadioState.ON:
            await asyncio.sleep(self._radio_probe_interval_s)
            await self._probe()

    async def _stop_scanner(self, scanner: BleakScanner) -> None:
        try:
            await scanner.stop()
        except BleakError as exc:
            LOGGER.debug("Scanner stop failed: %s", exc)

    async def _connect(self, device_id: str, handle: Any) -> None:
        listener = self._require_listener()
        client = BleakClient(
            handle if isinstance(handle, BLEDevice) else device_id,
            disconnected_callback=lambda _: self._on_client_disconnected(device_id, client),
            timeout=self._timeout(),
        )
        try:
            await client.connect()
            if not client.is_connected:
                raise BleakError(f"BLE connect failed for {device_id}")
        except asyncio.CancelledError:
            listener.on_connect_failed(device_id, "connection cancelled")
            raise
        except Exception as exc:
            listener.on_connect_failed(device_id, _describe(exc))
            return
        finally:
            self._connecting.pop(device_id, None)

        self._clients[device_id] = client
        listener.on_connected(device_id)

    async def _disconnect(self, device_id: str, client: BleakClient) -> None:
        error: str | None = None
        try:
            await client.disconnect()
        except (BleakError, OSError) as exc:
            error = _describe(exc)
        self._require_listener().on_disconnected(device_id, error)

    async def _write(self, device_id: str, char_uuid: str, data: bytes, with_ack: bool) -> None:
        listener = self._require_listener()
        client = self._clients.get(device_id)
        if client is None:
            listener.on_write_complete(device_id, char_uuid, "not connected")
            return
        try:
            await client.write_gatt_char(char_uuid, data, response=with_ack)
        except Exception as exc:
            listener.on_write_complete(device_id, char_uuid, _describe(exc))
            return
        listener.on_write_complete(device_id, char_uuid, None)

    async def _set_notify(self, device_id: str, char_uuid: str, enabled: bool) -> None:
        listener = self._require_listener()
        client = self._clients.get(device_id)
        if client is None:
            listener.on_notify_state_changed(device_id, char_uuid, enabled, "not connected")
            return

        def _notify_handler(_: Any, data: bytearray) -> None:
            listener.on_value_updated(device_id, char_uuid, bytes(data), None)

        try:
            if enabled:
                await client.start_notify(char_uuid, _notify_handler)
            else:
                await client.stop_notify(char_uuid)
        except Exception as exc:
            listener.on_notify_state_changed(device_id, char_uuid, enabled, _describe(exc))
            return
        listener.on_notify_state_changed(device_id, char_uuid, enabled, None)

    # Callbacks from bleak

    def _on_detection(self, device: BLEDevice, advertisement_data: AdvertisementData) -> None:
        if self._scanner is None:
            return
        self._require_listener().on_advertisement(
            device.address,
            Advertisement(local_name=advertisement_data.local_name, cached_name=device.name),
            advertisement_data.rssi,
            device,
        )

    def _on_client_disconnected(self, device_id: str, client: BleakClient) -> None:
        if self._clients.get(device_id) is not client:
            return
        del self._clients[device_id]
        self._require_listener().on_disconnected(device_id, None)

    # Helpers

    def _timeout(self) -> float:
        if callable(self._connect_timeout_s):
            return self._connect_timeout_s()
        return self._connect_timeout_s

    def _radio_lost(self, state: RadioState) -> None:
        self._set_power(state)
        if self._radio_watch is None or self._radio_watch.done():
            self._radio_watch = self._spawn(self._watch_radio(delay_s=self._radio_probe_interval_s))

    def _cancel_scan_task(self) -> None:
        task, self._scan_task = self._scan_task, None
        if task is not None and not task.done():
            task.cancel()

    def _set_power(self, state: RadioState) -> None:
        if state is self._power:
            return
        self._power = state
        if self._listener is not None:
            self._listener.on_radio_state(state)

    def _require_listener(self) -> AdapterListener:
        if self._listener is None:
            raise AdapterUnavailableError("BLE adapter has no listener bound")
        return self._listener

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise AdapterUnavailableError("BLE adapter is not open; call open() first")
        return self._loop

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        try:
            loop = self._require_loop()
        except AdapterUnavailableError:
            coro.close()
            raise
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _spawn_teardown(self, coro: Coroutine[Any, Any, None]) -> None:
        task = self._spawn(coro)
        self._teardown.add(task)
        task.add_done_callback(self._teardown.discard)

    def _deliver(self, callback: Callable[..., None], *args: Any) -> None:
        self._require_loop().call_soon(callback, *args)
