"""Connection lifecycle as an explicit (session, event) -> (session, effects) function.

The function is pure: it never touches the adapter. The controller feeds it
adapter callbacks and user requests as events and executes the returned
effects in order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from doorctl.core.model import (
    NUS_NOTIFY_CHAR_UUID,
    NUS_SERVICE_UUID,
    NUS_WRITE_CHAR_UUID,
    GattCharacteristic,
    Session,
    SessionState,
    Settings,
    normalize_uuid,
)

# Events


@dataclass(frozen=True)
class ConnectRequested:
    device_id: str
    name: str
    handle: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class DisconnectRequested:
    pass


@dataclass(frozen=True)
class Connected:
    device_id: str


@dataclass(frozen=True)
class ConnectFailed:
    device_id: str
    error: str | None = None


@dataclass(frozen=True)
class Disconnected:
    device_id: str
    error: str | None = None


@dataclass(frozen=True)
class ScanRestarted:
    pass


@dataclass(frozen=True)
class ServicesDiscovered:
    device_id: str
    services: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class CharacteristicsDiscovered:
    device_id: str
    service_uuid: str
    characteristics: tuple[GattCharacteristic, ...] = ()
    error: str | None = None


Event = Union[
    ConnectRequested,
    DisconnectRequested,
    Connected,
    ConnectFailed,
    Disconnected,
    ScanRestarted,
    ServicesDiscovered,
    CharacteristicsDiscovered,
]

# Effects


@dataclass(frozen=True)
class StopScan:
    pass


@dataclass(frozen=True)
class StartScan:
    pass


@dataclass(frozen=True)
class Connect:
    device_id: str
    handle: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class Disconnect:
    device_id: str


@dataclass(frozen=True)
class DiscoverServices:
    device_id: str
    uuids: tuple[str, ...]


@dataclass(frozen=True)
class DiscoverCharacteristics:
    device_id: str
    service_uuid: str
    uuids: tuple[str, ...]


@dataclass(frozen=True)
class Subscribe:
    device_id: str
    characteristic: GattCharacteristic


@dataclass(frozen=True)
class Log:
    message: str


Effect = Union[
    StopScan,
    StartScan,
    Connect,
    Disconnect,
    DiscoverServices,
    DiscoverCharacteristics,
    Subscribe,
    Log,
]


@dataclass(frozen=True)
class Transition:
    session: Session
    effects: tuple[Effect, ...] = ()


_BOUND_STATES = frozenset(
    {
        SessionState.CONNECTING,
        SessionState.DISCOVERING_SERVICES,
        SessionState.DISCOVERING_CHARACTERISTICS,
        SessionState.READY,
    }
)


def _unchanged(session: Session) -> Transition:
    return Transition(session=session)


def _stall(session: Session, message: str, settings: Settings) -> Transition:
    effects: list[Effect] = [Log(message)]
    if settings.recover_on_discovery_failure and session.peripheral is not None:
        effects.append(Log("Giving up on this connection; disconnecting…"))
        effects.append(Disconnect(session.peripheral))
    return Transition(session=session, effects=tuple(effects))


def _is_current(session: Session, device_id: str, *states: SessionState) -> bool:
    return session.peripheral == device_id and session.state in states


def transition(session: Session, event: Event, settings: Settings) -> Transition:
    """Advance the session for one event.

    Events that do not apply to the bound peripheral or the current state are
    stale and leave the session untouched.
    """
    if isinstance(event, ConnectRequested):
        if session.peripheral is not None:
            return Transition(
                session=session,
                effects=(Log(f"Already bound to {session.peripheral}; ignoring connect to {event.name}"),),
            )
        return Transition(
            session=Session(peripheral=event.device_id, state=SessionState.CONNECTING),
            effects=(
                StopScan(),
                Log(f"Connecting to {event.name}…"),
                Connect(event.device_id, event.handle),
            ),
        )

    if isinstance(event, DisconnectRequested):
        if session.peripheral is None:
            return _unchanged(session)
        return Transition(
            session=session,
            effects=(Log("Disconnecting…"), Disconnect(session.peripheral)),
        )

    if isinstance(event, Connected):
        if not _is_current(session, event.device_id, SessionState.CONNECTING):
            return _unchanged(session)
        return Transition(
            session=Session(peripheral=event.device_id, state=SessionState.DISCOVERING_SERVICES),
            effects=(
                Log("Connected. Discovering services…"),
                DiscoverServices(event.device_id, (NUS_SERVICE_UUID,)),
            ),
        )

    if isinstance(event, ConnectFailed):
        if not _is_current(session, event.device_id, SessionState.CONNECTING):
            return _unchanged(session)
        return Transition(
            session=Session(),
            effects=(Log(f"Connect failed: {event.error or 'unknown'}"), StartScan()),
        )

    if isinstance(event, Disconnected):
        if session.peripheral != event.device_id or session.state not in _BOUND_STATES:
            return _unchanged(session)
        message = "Disconnected." if not event.error else f"Disconnected: {event.error}"
        return Transition(
            session=Session(state=SessionState.DISCONNECTED),
            effects=(Log(message), StartScan()),
        )

    if isinstance(event, ScanRestarted):
        if session.state is not SessionState.DISCONNECTED:
            return _unchanged(session)
        return Transition(session=Session(), effects=())

    if isinstance(event, ServicesDiscovered):
        if not _is_current(session, event.device_id, SessionState.DISCOVERING_SERVICES):
            return _unchanged(session)
        if event.error:
            return _stall(session, f"Service discovery error: {event.error}", settings)
        if NUS_SERVICE_UUID not in {normalize_uuid(uuid) for uuid in event.services}:
            return _stall(session, "Service discovery error: NUS service not found", settings)
        return Transition(
            session=Session(
                peripheral=event.device_id,
                state=SessionState.DISCOVERING_CHARACTERISTICS,
            ),
            effects=(
                Log("NUS found. Discovering characteristics…"),
                DiscoverCharacteristics(
                    event.device_id,
                    NUS_SERVICE_UUID,
                    (NUS_WRITE_CHAR_UUID, NUS_NOTIFY_CHAR_UUID),
                ),
            ),
        )

    if isinstance(event, CharacteristicsDiscovered):
        if not _is_current(session, event.device_id, SessionState.DISCOVERING_CHARACTERISTICS):
            return _unchanged(session)
        if event.error:
            return _stall(session, f"Char discovery error: {event.error}", settings)
        return _bind_characteristics(session, event, settings)

    raise TypeError(f"Unsupported lifecycle event {event!r}")


def _bind_characteristics(
    session: Session,
    event: CharacteristicsDiscovered,
    settings: Settings,
) -> Transition:
    write_channel: GattCharacteristic | None = None
    notify_channel: GattCharacteristic | None = None
    for characteristic in event.characteristics:
        uuid = normalize_uuid(characteristic.uuid)
        if uuid == NUS_WRITE_CHAR_UUID:
            write_channel = characteristic
        elif uuid == NUS_NOTIFY_CHAR_UUID:
            notify_channel = characteristic

    if write_channel is None or notify_channel is None:
        missing = [
            label
            for label, found in (("RX (write)", write_channel), ("TX (notify)", notify_channel))
            if found is None
        ]
        return _stall(
            session,
            f"Char discovery error: missing {' and '.join(missing)} characteristic",
            settings,
        )

    effects: list[Effect] = [Log("RX characteristic ready (Write).")]
    if notify_channel.can_notify:
        effects.append(Subscribe(event.device_id, notify_channel))
        effects.append(Log("Subscribed to TX notifications."))
    else:
        effects.append(Log("TX characteristic does not support notifications."))

    return Transition(
        session=Session(
            peripheral=event.device_id,
            state=SessionState.READY,
            write_channel=write_channel,
            notify_channel=notify_channel,
        ),
        effects=tuple(effects),
    )
