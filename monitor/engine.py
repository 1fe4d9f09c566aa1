"""Monitoring session state machine.

idle -> active <-> paused -> completed; `start()` is allowed from idle and
from completed. The engine alone holds the current-session binding. Two
timers drive it: the sampling timer captures and scores a frame, the tick
timer accumulates elapsed time. Both only have an effect while active.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from camera.base import BaseCamera
from core.contracts import MonitorSessionDraft, MonitorSnapshot, SessionStatus
from core.errors import ValidationError
from core.lifecycle import AsyncTaskOwner
from core.roast import is_near_target
from core.scheduler import LoopTimer, PeriodicTimer, TimerFactory
from detect.base import RoastEstimator
from store.state import Committed, Failed, StateStore, StoreEvent
from utils.timestamps import strictly_after, utc_now

L = logging.getLogger("roast_monitor.monitor")


class MonitorState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Sample:
    snapshot: MonitorSnapshot
    near_target: bool


@dataclass(frozen=True)
class StopReport:
    session_id: str
    snapshot_count: int
    elapsed_s: float


SampleListener = Callable[[Sample], None]


class MonitorEngine:
    def __init__(
        self,
        store: StateStore,
        camera: BaseCamera,
        estimator: RoastEstimator,
        *,
        timer_factory: TimerFactory = LoopTimer,
        clock: Callable[[], datetime] | None = None,
        sample_period_s: float = 3.0,
        tick_period_s: float = 1.0,
        near_target_delta: float = 5.0,
        on_sample: SampleListener | None = None,
    ):
        self.store = store
        self.camera = camera
        self.estimator = estimator
        self._timer_factory = timer_factory
        self._clock = clock or utc_now
        self.sample_period_s = float(sample_period_s)
        self.tick_period_s = float(tick_period_s)
        self.near_target_delta = float(near_target_delta)
        self.on_sample = on_sample
        self.tasks = AsyncTaskOwner(owner_name="monitor")

        self._state = MonitorState.IDLE
        self._session_id: str | None = None
        self._target_index = 0.0
        self._elapsed_s = 0.0
        self._samples: list[Sample] = []
        self._seq = 0
        self._run_token = 0
        self._starting = False
        self._timers: list[PeriodicTimer] = []
        self._source_stack: ExitStack | None = None
        # Serializes status changes and stop so remote updates go out in order.
        self._status_lock = asyncio.Lock()
        # Keeps samples in tick order while capture runs off the loop.
        self._sample_lock = asyncio.Lock()
        self._sampling: set[asyncio.Task] = set()
        self._unsubscribe = store.subscribe(self._on_store_event)
        self._unhook_logout = store.before_logout(self.stop)

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def elapsed_s(self) -> float:
        return self._elapsed_s

    @property
    def samples(self) -> list[Sample]:
        return list(self._samples)

    async def start(self, name: str, target_index: float, target_label) -> str:
        if self._session_id is not None or self._starting:
            raise ValidationError("a monitoring session is already running")
        draft = MonitorSessionDraft(
            name=name,
            target_roast_index=target_index,
            target_roast_label=target_label,
            start_time=self._clock(),
        )
        self._starting = True
        try:
            await asyncio.to_thread(self._acquire_source)
            try:
                session = (await self.store.add_monitor_session(draft)).unwrap()
            except BaseException:
                await asyncio.to_thread(self._release_source)
                raise
        finally:
            self._starting = False

        self._session_id = session.id
        self._target_index = session.target_roast_index
        self._state = MonitorState.ACTIVE
        self._elapsed_s = 0.0
        self._samples = []
        self._seq = 0
        self._start_timers()
        L.info(
            "monitoring %r started (session=%s target=%.0f %s)",
            session.name,
            session.id,
            session.target_roast_index,
            session.target_roast_label.value,
        )
        return session.id

    async def pause(self):
        await self._set_status(MonitorState.ACTIVE, MonitorState.PAUSED, SessionStatus.PAUSED)

    async def resume(self):
        await self._set_status(MonitorState.PAUSED, MonitorState.ACTIVE, SessionStatus.ACTIVE)

    async def _set_status(
        self, expected: MonitorState, new_state: MonitorState, status: SessionStatus
    ):
        async with self._status_lock:
            if self._session_id is None or self._state != expected:
                return
            self._state = new_state
            L.info("monitoring %s (session=%s)", new_state.value, self._session_id)
            result = await self.store.update_monitor_session(self._session_id, status=status)
            if isinstance(result, Failed):
                L.warning(
                    "session status update to %s not saved: %s", status.value, result.error
                )

    async def stop(self) -> StopReport | None:
        async with self._status_lock:
            session_id = self._session_id
            if session_id is None:
                return None
            self._stop_timers()
            self._session_id = None
            self._state = MonitorState.COMPLETED
            # In-flight captures see the new token and discard their frame.
            if self._sampling:
                await asyncio.gather(*list(self._sampling), return_exceptions=True)
            await asyncio.to_thread(self._release_source)
            report = StopReport(
                session_id=session_id,
                snapshot_count=len(self._samples),
                elapsed_s=self._elapsed_s,
            )
            L.info(
                "monitoring stopped (session=%s snapshots=%d elapsed=%.0fs)",
                session_id,
                report.snapshot_count,
                report.elapsed_s,
            )
            result = await self.store.update_monitor_session(
                session_id, status=SessionStatus.COMPLETED, end_time=self._clock()
            )
            if isinstance(result, Failed):
                L.warning("session completion not saved: %s", result.error)
            return report

    async def close(self):
        self._unsubscribe()
        self._unhook_logout()
        await self.stop()
        await self.tasks.drain()

    async def __aenter__(self) -> "MonitorEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # timers
    def _start_timers(self):
        self._run_token += 1
        token = self._run_token
        sample_timer = self._timer_factory()
        tick_timer = self._timer_factory()
        self._timers = [sample_timer, tick_timer]
        sample_timer.start(self.sample_period_s, lambda: self._on_sample_tick(token))
        tick_timer.start(self.tick_period_s, lambda: self._on_elapsed_tick(token))

    def _stop_timers(self):
        # Bumping the token turns any tick already queued into a no-op.
        self._run_token += 1
        for timer in self._timers:
            timer.cancel()
        self._timers = []

    def _is_current(self, token: int) -> bool:
        return token == self._run_token and self._state == MonitorState.ACTIVE

    def _on_elapsed_tick(self, token: int):
        if not self._is_current(token):
            return
        self._elapsed_s += self.tick_period_s

    def _on_sample_tick(self, token: int):
        if not self._is_current(token) or self._session_id is None:
            return
        self._seq += 1
        task = self.tasks.spawn(
            self._take_sample(token, self._session_id, self._seq, self._clock())
        )
        self._sampling.add(task)
        task.add_done_callback(self._sampling.discard)

    async def _take_sample(self, token: int, session_id: str, seq: int, taken_at: datetime):
        async with self._sample_lock:
            if not self._is_current(token):
                return
            capture = await asyncio.to_thread(self.camera.capture_once, seq)
            if not capture.success:
                L.warning("sample %d dropped: %s", seq, capture.error)
                return
            try:
                estimate = await asyncio.to_thread(
                    self.estimator.estimate, capture.image, target_index=self._target_index
                )
            except Exception:
                L.exception("sample %d dropped: estimation failed", seq)
                return
            if not self._is_current(token):
                L.debug("sample %d discarded: session no longer active", seq)
                return
            previous = self._samples[-1].snapshot.timestamp if self._samples else None
            timestamp = strictly_after(taken_at, previous)
            try:
                snapshot = self.store.record_snapshot(session_id, estimate, timestamp)
            except ValidationError as e:
                L.warning("sample %d dropped: %s", seq, e)
                return
            sample = Sample(
                snapshot=snapshot,
                near_target=is_near_target(
                    snapshot.roast_index, self._target_index, self.near_target_delta
                ),
            )
            self._samples.append(sample)
            L.debug(
                "sample %d index=%.1f %s near_target=%s",
                seq,
                snapshot.roast_index,
                snapshot.roast_label.value,
                sample.near_target,
            )
        self.tasks.spawn(self.store.persist_snapshot(snapshot))
        if self.on_sample is not None:
            try:
                self.on_sample(sample)
            except Exception:
                L.exception("sample listener failed")

    # sampling source; both run in a worker thread since devices may block
    def _acquire_source(self):
        stack = ExitStack()
        stack.enter_context(self.camera.session())
        self._source_stack = stack

    def _release_source(self):
        stack = self._source_stack
        if stack is None:
            return
        self._source_stack = None
        try:
            stack.close()
        except Exception:
            L.exception("releasing sampling source failed")

    def _on_store_event(self, event: StoreEvent):
        # Sign-outs that bypass logout() (expired tokens, other tabs) end the session here.
        if (
            isinstance(event, Committed)
            and event.action == "logout"
            and self._session_id is not None
        ):
            L.info("signed out; ending session %s", self._session_id)
            self.tasks.spawn(self.stop())


__all__ = ["MonitorEngine", "MonitorState", "Sample", "StopReport"]
