"""
Countdown timers behind the set_timer tool.

Timers run on daemon threading.Timer threads and call a notify hook
when they fire. They live only as long as the process.
"""

import logging
import re
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from palagent.primitives import ArgumentError

logger = logging.getLogger(__name__)

# (title, body) -> None
NotifyHook = Callable[[str, str], None]

DEFAULT_BODY = "Your timer has finished!"

_UNITS = (
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:hours?|hrs?|h)\b", re.IGNORECASE), 3600),
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:minutes?|mins?|m)\b", re.IGNORECASE), 60),
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:seconds?|secs?|s)\b", re.IGNORECASE), 1),
)


def parse_duration(text: str) -> float:
    """
    Seconds in a duration such as "5 minutes" or "1 hour 30 min".

    A bare number is read as minutes. Returns 0 when nothing is
    recognised.
    """
    text = (text or "").strip()
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return float(text) * 60
    total = 0.0
    for pattern, seconds in _UNITS:
        for match in pattern.finditer(text):
            total += float(match.group(1)) * seconds
    return total


@dataclass
class ActiveTimer:
    id: str
    label: str | None
    seconds: float
    ends_at: datetime
    thread: threading.Timer = field(repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "duration_seconds": self.seconds,
            "ends_at": self.ends_at.isoformat(),
        }


class TimerService:
    def __init__(self, notify: NotifyHook | None = None) -> None:
        self.notify = notify
        self._timers: dict[str, ActiveTimer] = {}
        self._lock = threading.Lock()

    def set_timer(self, duration: str, label: str | None = None) -> dict[str, Any]:
        seconds = parse_duration(duration)
        if seconds <= 0:
            raise ArgumentError(f"Could not parse duration: {duration}")

        timer_id = uuid.uuid4().hex[:8]
        thread = threading.Timer(seconds, self._fire, args=(timer_id,))
        thread.daemon = True
        timer = ActiveTimer(
            id=timer_id,
            label=label,
            seconds=seconds,
            ends_at=datetime.now(UTC) + timedelta(seconds=seconds),
            thread=thread,
        )
        with self._lock:
            self._timers[timer_id] = timer
        thread.start()

        logger.info(f"Timer {timer_id} set for {seconds:g}s")
        suffix = f" ({label})" if label else ""
        return {**timer.to_dict(), "message": f"Timer set for {duration}{suffix}"}

    def _fire(self, timer_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(timer_id, None)
        if timer is None:
            return
        logger.info(f"Timer {timer_id} finished")
        if self.notify is None:
            return
        try:
            self.notify("Timer Complete", timer.label or DEFAULT_BODY)
        except Exception as e:
            logger.error(f"Timer {timer_id} notification failed: {e}")

    def cancel(self, timer_id: str) -> bool:
        with self._lock:
            timer = self._timers.pop(timer_id, None)
        if timer is None:
            return False
        timer.thread.cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.thread.cancel()

    @property
    def active(self) -> list[ActiveTimer]:
        with self._lock:
            return list(self._timers.values())
