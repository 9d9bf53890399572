from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class ManualTimer:
    """Timer double that only fires when a test says so."""

    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.function()


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def live(self) -> list[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled]


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def ids() -> Callable[[], str]:
    """Sequential commit ids: c0001, c0002, ..."""
    counter = {"value": 0}

    def next_id() -> str:
        counter["value"] += 1
        return f"c{counter['value']:04d}"

    return next_id


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock advancing one minute per call."""
    start = datetime(2026, 1, 1, 9, 0, tzinfo=UTC)
    counter = {"value": 0}

    def now() -> datetime:
        counter["value"] += 1
        return start + timedelta(minutes=counter["value"])

    return now
