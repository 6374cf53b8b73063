"""Core data models used across registry, controller, and CLI."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

NUS_SERVICE_UUID = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
NUS_WRITE_CHAR_UUID = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"
NUS_NOTIFY_CHAR_UUID = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"

UNKNOWN_NAME = "Unknown"
EVICTION_WINDOW_S = 15.0
SWEEP_INTERVAL_S = 5.0
AUTH_DELAY_S = 0.3


def normalize_uuid(value: str) -> str:
    return value.strip().lower()


class RadioState(enum.Enum):
    ON = "on"
    OFF = "off"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED = "unsupported"
    RESETTING = "resetting"
    UNKNOWN = "unknown"


class SessionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    DISCOVERING_SERVICES = "discovering_services"
    DISCOVERING_CHARACTERISTICS = "discovering_characteristics"
    READY = "ready"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Advertisement:
    local_name: str | None = None
    cached_name: str | None = None


@dataclass(frozen=True)
class DiscoveredDevice:
    id: str
    display_name: str
    signal_strength: int
    last_seen: float
    handle: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class GattCharacteristic:
    uuid: str
    service_uuid: str
    properties: frozenset[str] = frozenset()

    @property
    def can_notify(self) -> bool:
        return "notify" in self.properties or "indicate" in self.properties


@dataclass(frozen=True)
class Session:
    """The one peripheral session; replaced wholesale on every transition."""

    peripheral: str | None = None
    state: SessionState = SessionState.IDLE
    write_channel: GattCharacteristic | None = None
    notify_channel: GattCharacteristic | None = None
    last_message: str = ""

    @property
    def is_ready(self) -> bool:
        return (
            self.state is SessionState.READY
            and self.write_channel is not None
            and self.notify_channel is not None
        )


@dataclass(frozen=True)
class Settings:
    target_name: str = ""
    auto_connect: bool = True
    auto_auth: bool = True
    pin: str = ""
    auth_delay_s: float = AUTH_DELAY_S
    connect_timeout_s: float = 10.0
    event_log_size: int = 500
    recover_on_discovery_failure: bool = False


@dataclass(frozen=True)
class ControllerSnapshot:
    devices: tuple[DiscoveredDevice, ...]
    scanning: bool
    radio_state: RadioState
    session: Session
    events: tuple[str, ...]

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def last_message(self) -> str:
        return self.session.last_message
