"""Periodic timers with `start(period, callback)` / `cancel()`.

`LoopTimer` runs on the asyncio loop; `ManualClock` hands out timers that only
fire when the clock is advanced, so state machines can be driven in simulated
time.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

L = logging.getLogger("roast_monitor.scheduler")

TimerCallback = Callable[[], None]


class PeriodicTimer(ABC):
    @abstractmethod
    def start(self, period: float, callback: TimerCallback) -> None:
        """Fire `callback` every `period` seconds until cancelled."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop firing. Safe to call more than once."""

    @property
    @abstractmethod
    def active(self) -> bool: ...


class TimerFactory(Protocol):
    def __call__(self) -> PeriodicTimer: ...


def _check_period(period: float) -> float:
    value = float(period)
    if value <= 0:
        raise ValueError(f"timer period must be > 0, got {period!r}")
    return value


def _fire(callback: TimerCallback):
    try:
        callback()
    except Exception:
        L.exception("timer callback failed")


class LoopTimer(PeriodicTimer):
    """Fixed-rate timer on an asyncio loop (deadlines do not drift)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._period = 0.0
        self._next_deadline = 0.0
        self._callback: TimerCallback | None = None

    def start(self, period: float, callback: TimerCallback) -> None:
        if self.active:
            raise RuntimeError("timer already started")
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._period = _check_period(period)
        self._callback = callback
        self._next_deadline = loop.time() + self._period
        self._handle = loop.call_at(self._next_deadline, self._on_deadline)

    def _on_deadline(self):
        callback = self._callback
        loop = self._loop
        if callback is None or loop is None:
            return
        self._next_deadline += self._period
        now = loop.time()
        if self._next_deadline <= now:
            # Missed deadlines are dropped, not queued.
            missed = int((now - self._next_deadline) // self._period) + 1
            self._next_deadline += missed * self._period
        self._handle = loop.call_at(self._next_deadline, self._on_deadline)
        _fire(callback)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._callback = None

    @property
    def active(self) -> bool:
        return self._callback is not None


class ManualClock:
    """Simulated time source; timers fire in deadline order during `advance()`."""

    def __init__(self, start: datetime | None = None):
        self._epoch = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._now = 0.0
        self._timers: list[ManualTimer] = []
        self._seq = 0

    @property
    def now(self) -> float:
        return self._now

    def utcnow(self) -> datetime:
        return self._epoch + timedelta(seconds=self._now)

    def timer(self) -> "ManualTimer":
        return ManualTimer(self)

    def _register(self, timer: "ManualTimer") -> int:
        self._seq += 1
        self._timers.append(timer)
        return self._seq

    def _unregister(self, timer: "ManualTimer"):
        if timer in self._timers:
            self._timers.remove(timer)

    def advance(self, seconds: float) -> int:
        """Move time forward, firing due timers; returns how many callbacks ran."""
        target = self._now + float(seconds)
        fired = 0
        while True:
            due = [t for t in self._timers if t.deadline <= target + 1e-9]
            if not due:
                break
            nxt = min(due, key=lambda t: (t.deadline, t.order))
            self._now = max(self._now, nxt.deadline)
            nxt._fire()
            fired += 1
        self._now = target
        return fired


class ManualTimer(PeriodicTimer):
    def __init__(self, clock: ManualClock):
        self._clock = clock
        self._callback: TimerCallback | None = None
        self._period = 0.0
        self.deadline = float("inf")
        self.order = 0

    def start(self, period: float, callback: TimerCallback) -> None:
        if self.active:
            raise RuntimeError("timer already started")
        self._period = _check_period(period)
        self._callback = callback
        self.deadline = self._clock.now + self._period
        self.order = self._clock._register(self)

    def _fire(self):
        callback = self._callback
        self.deadline += self._period
        if callback is not None:
            _fire(callback)

    def cancel(self) -> None:
        self._callback = None
        self.deadline = float("inf")
        self._clock._unregister(self)

    @property
    def active(self) -> bool:
        return self._callback is not None


__all__ = [
    "PeriodicTimer",
    "TimerFactory",
    "LoopTimer",
    "ManualClock",
    "ManualTimer",
]
