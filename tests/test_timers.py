"""
Tests for countdown timers.
"""

import threading

import pytest

from palagent.primitives import ArgumentError
from palagent.timers import DEFAULT_BODY, TimerService, parse_duration


class TestParseDuration:
    @pytest.mark.parametrize("text, seconds", [
        ("5 minutes", 300),
        ("1 hour 30 minutes", 5400),
        ("45 sec", 45),
        ("2 hrs", 7200),
        ("10", 600),
        ("1.5 minutes", 90),
        ("soon", 0),
        ("", 0),
    ])
    def test_durations(self, text: str, seconds: float) -> None:
        assert parse_duration(text) == seconds


class TestTimerService:
    def test_fire_notifies_once(self) -> None:
        fired: list[tuple[str, str]] = []
        service = TimerService(notify=lambda title, body: fired.append((title, body)))
        timer = service.set_timer("10 minutes")
        try:
            service._fire(timer["id"])
            service._fire(timer["id"])
        finally:
            service.cancel_all()

        assert fired == [("Timer Complete", DEFAULT_BODY)]

    def test_short_timer_actually_fires(self) -> None:
        fired: list[str] = []
        done = threading.Event()

        def notify(title: str, body: str) -> None:
            fired.append(body)
            done.set()

        service = TimerService(notify=notify)
        timer = service.set_timer("0.05 sec", label="eggs")

        assert done.wait(timeout=2)
        assert fired == ["eggs"]
        assert service.active == []
        assert timer["message"] == "Timer set for 0.05 sec (eggs)"

    def test_cancel(self) -> None:
        service = TimerService()
        timer = service.set_timer("1 hour")

        assert service.cancel(timer["id"])
        assert not service.cancel(timer["id"])
        assert service.active == []

    def test_notify_errors_are_contained(self) -> None:
        def broken(title: str, body: str) -> None:
            raise RuntimeError("no display")

        service = TimerService(notify=broken)
        timer = service.set_timer("1 minute")
        try:
            service._fire(timer["id"])
        finally:
            service.cancel_all()

    def test_unparseable_duration(self) -> None:
        with pytest.raises(ArgumentError, match="Could not parse duration"):
            TimerService().set_timer("later")
