"""Registry of peripherals seen while scanning."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from doorctl.core.model import EVICTION_WINDOW_S, DiscoveredDevice

LOGGER = logging.getLogger(__name__)


def _by_signal_strength(device: DiscoveredDevice) -> int:
    return device.signal_strength


class DeviceRegistry:
    """Transient records of discovered devices, keyed by device id.

    Records are immutable; an upsert replaces the record in place so the
    insertion position of an id is kept for its whole lifetime.
    """

    def __init__(self, *, eviction_window_s: float = EVICTION_WINDOW_S) -> None:
        self.eviction_window_s = eviction_window_s
        self._devices: dict[str, DiscoveredDevice] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def get(self, device_id: str) -> DiscoveredDevice | None:
        return self._devices.get(device_id)

    def upsert(
        self,
        device_id: str,
        name: str,
        rssi: int,
        now: float,
        *,
        handle: Any = None,
    ) -> DiscoveredDevice:
        existing = self._devices.get(device_id)
        if existing is None:
            device = DiscoveredDevice(
                id=device_id,
                display_name=name,
                signal_strength=rssi,
                last_seen=now,
                handle=handle,
            )
        else:
            changes: dict[str, Any] = {
                "signal_strength": rssi,
                "last_seen": max(existing.last_seen, now),
            }
            if existing.display_name != name:
                changes["display_name"] = name
            if handle is not None:
                changes["handle"] = handle
            device = replace(existing, **changes)
        self._devices[device_id] = device
        return device

    def sweep(self, now: float) -> list[str]:
        """Drop every record not seen within the eviction window."""
        expired = [
            device_id
            for device_id, device in self._devices.items()
            if now - device.last_seen > self.eviction_window_s
        ]
        for device_id in expired:
            del self._devices[device_id]
        if expired:
            LOGGER.debug("Evicted %d stale device(s): %s", len(expired), ", ".join(expired))
        return expired

    def clear(self) -> None:
        self._devices.clear()

    def snapshot(
        self,
        predicate: Callable[[DiscoveredDevice], bool] | None = None,
        *,
        key: Callable[[DiscoveredDevice], Any] = _by_signal_strength,
        reverse: bool = True,
    ) -> tuple[DiscoveredDevice, ...]:
        devices = [d for d in self._devices.values() if predicate is None or predicate(d)]
        return tuple(sorted(devices, key=key, reverse=reverse))
