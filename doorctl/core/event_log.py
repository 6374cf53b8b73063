"""Bounded diagnostic trace of state transitions and protocol events."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 500

EventListener = Callable[[str], None]


class EventLog:
    """Append-only ring buffer; the oldest lines are evicted once full."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._entries: deque[str] = deque(maxlen=max_entries)
        self._listeners: list[EventListener] = []
        self.dropped = 0

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, line: str) -> None:
        if len(self._entries) == self._entries.maxlen:
            self.dropped += 1
        self._entries.append(line)
        LOGGER.info(line)
        for listener in list(self._listeners):
            try:
                listener(line)
            except Exception:
                LOGGER.exception("Event log listener failed")

    def entries(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe
