from __future__ import annotations

import random

from worldkeeper.classifier import LogEvent, LogEventKind
from worldkeeper.sessions import SessionTracker


def test_count_never_goes_negative() -> None:
    rng = random.Random(1234)
    tracker = SessionTracker()
    for _ in range(2000):
        if rng.random() < 0.45:
            tracker.on_join(rng.choice(["a", "b", "c", None]))
        else:
            tracker.on_leave(rng.choice(["a", "b", "c", None]))
        assert tracker.count >= 0
        assert tracker.is_idle() == (tracker.count == 0)


def test_leave_at_zero_is_a_logged_no_op(caplog) -> None:
    tracker = SessionTracker()
    tracker.on_leave()
    assert tracker.count == 0
    assert "no matching session" in caplog.text


def test_idle_listener_fires_when_last_player_leaves() -> None:
    tracker = SessionTracker()
    fired: list[int] = []
    tracker.add_idle_listener(lambda: fired.append(tracker.count))

    tracker.on_join("Steve")
    tracker.on_join("Alex")
    tracker.on_leave("Steve")
    assert fired == []
    tracker.on_leave("Alex")
    assert fired == [0]


def test_disconnect_reported_twice_counts_once() -> None:
    tracker = SessionTracker()
    fired: list[bool] = []
    tracker.add_idle_listener(lambda: fired.append(True))
    tracker.on_join("Steve")
    tracker.on_join("Alex")

    tracker.handle(LogEvent(LogEventKind.PLAYER_LEFT, "Steve"))
    tracker.handle(LogEvent(LogEventKind.PLAYER_LEFT, "Steve"))

    assert tracker.count == 1
    assert tracker.players == ["Alex"]
    assert fired == []


def test_anonymous_events_use_plain_counter() -> None:
    tracker = SessionTracker()
    tracker.on_join()
    tracker.on_join()
    tracker.on_leave()
    assert tracker.count == 1
    tracker.on_leave()
    assert tracker.is_idle()


def test_ready_event_does_not_touch_count() -> None:
    tracker = SessionTracker()
    tracker.handle(LogEvent(LogEventKind.SERVICE_READY))
    assert tracker.count == 0
