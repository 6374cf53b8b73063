from __future__ import annotations

import logging

import pytest

from doorctl.core.event_log import EventLog


def test_entries_keep_arrival_order() -> None:
    log = EventLog()
    log.append("one")
    log.append("two")
    assert log.entries() == ("one", "two")


def test_oldest_entries_are_evicted_when_full() -> None:
    log = EventLog(max_entries=3)
    for i in range(5):
        log.append(f"line {i}")

    assert log.entries() == ("line 2", "line 3", "line 4")
    assert log.dropped == 2


def test_subscribers_receive_lines_until_unsubscribed() -> None:
    log = EventLog()
    seen: list[str] = []
    unsubscribe = log.subscribe(seen.append)

    log.append("first")
    unsubscribe()
    log.append("second")

    assert seen == ["first"]


def test_failing_subscriber_does_not_break_logging(caplog: pytest.LogCaptureFixture) -> None:
    log = EventLog()

    def _boom(line: str) -> None:
        raise RuntimeError("listener exploded")

    log.subscribe(_boom)
    with caplog.at_level(logging.INFO, logger="doorctl.core.event_log"):
        log.append("still recorded")

    assert log.entries() == ("still recorded",)
    assert "still recorded" in caplog.text
    assert "Event log listener failed" in caplog.text


def test_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        EventLog(max_entries=0)
