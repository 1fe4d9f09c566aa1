"""Core runtime: component assembly and lifecycle for the CLI."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from camera import BaseCamera, create_camera_from_loaded_config
from camera.mock import read_image_bgr
from core.config import LoadedConfig
from core.contracts import DetectionDraft, RoastEstimate
from core.errors import ValidationError
from core.lifecycle import LoopRunner
from core.scheduler import LoopTimer
from detect import RoastEstimator, create_estimator_from_loaded_config
from monitor import MonitorEngine, Sample, StopReport
from store import MutationResult, StateFile, StateStore
from sync import Gateway, create_gateway_from_loaded_config

L = logging.getLogger("roast_monitor.runtime")

T = TypeVar("T")


@dataclass
class RuntimeBuildConfig:
    state_path: str
    sample_period_s: float = 3.0
    tick_period_s: float = 1.0
    near_target_delta: float = 5.0
    default_target_index: float = 65.0
    call_timeout_s: float = 30.0


def build_runtime_config_from_loaded_config(cfg: LoadedConfig) -> RuntimeBuildConfig:
    return RuntimeBuildConfig(
        state_path=cfg.runtime.state_path,
        sample_period_s=float(cfg.monitor.sample_period_s),
        tick_period_s=float(cfg.monitor.tick_period_s),
        near_target_delta=float(cfg.monitor.near_target_delta),
        default_target_index=float(cfg.monitor.default_target_index),
        call_timeout_s=max(30.0, float(cfg.gateway.timeout_s) * 3),
    )


class AppRuntime:
    """Owns the loop thread, the store, the engine and the gateway.

    Single-use: `start()` restores state and resolves identity, `stop()` ends
    any running session, saves, closes the gateway and stops the loop.
    """

    def __init__(
        self,
        config: RuntimeBuildConfig,
        *,
        gateway: Gateway,
        camera: BaseCamera,
        estimator_factory: Callable[[str], RoastEstimator],
        loop_runner: LoopRunner | None = None,
    ):
        self.config = config
        self.gateway = gateway
        self.camera = camera
        self.loop_runner = loop_runner or LoopRunner()
        self._estimator_factory = estimator_factory
        self.store = StateStore(gateway, state_file=StateFile(config.state_path))
        self.estimator: RoastEstimator | None = None
        self.engine: MonitorEngine | None = None
        self._started = False
        self._initialized = False
        self._stopped = False

    def call(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run `coro` on the runtime loop and wait for it."""
        return self.loop_runner.run_async(coro, timeout=self.config.call_timeout_s)

    def start(self):
        if self._started:
            raise RuntimeError("AppRuntime is single-use; start() may only be called once")
        if self._stopped:
            raise RuntimeError("AppRuntime is stopped and cannot be started again")
        self._started = True
        try:
            self.call(self.store.initialize())
            self._initialized = True
            # Advisory text follows the restored language setting.
            self.estimator = self._estimator_factory(self.store.settings.language)
            self.engine = MonitorEngine(
                self.store,
                self.camera,
                self.estimator,
                timer_factory=LoopTimer,
                sample_period_s=self.config.sample_period_s,
                tick_period_s=self.config.tick_period_s,
                near_target_delta=self.config.near_target_delta,
            )
        except Exception:
            L.exception("Runtime start failed; rolling back partial startup")
            try:
                self.stop()
            except Exception:
                L.exception("Runtime rollback stop failed")
            raise

    def estimate_image(self, path: str) -> RoastEstimate:
        if self.estimator is None:
            raise RuntimeError("AppRuntime.estimate_image() requires start() first")
        try:
            img = read_image_bgr(path)
        except (RuntimeError, OSError) as e:
            raise ValidationError(f"cannot read image {path}") from e
        return self.estimator.estimate(img)

    def save_detection(self, path: str, estimate: RoastEstimate) -> MutationResult:
        draft = DetectionDraft.from_estimate(estimate, image_ref=path)
        return self.call(self.store.add_detection_record(draft))

    def run_monitor(
        self,
        name: str,
        target_index: float,
        target_label,
        *,
        duration_s: float | None = None,
        on_sample: Callable[[Sample], None] | None = None,
        stop_event: threading.Event | None = None,
    ) -> StopReport | None:
        """Run one session until `duration_s` elapses, `stop_event` is set or Ctrl+C."""
        engine = self.engine
        if engine is None:
            raise RuntimeError("AppRuntime.run_monitor() requires start() first")
        stop_evt = stop_event or threading.Event()
        engine.on_sample = on_sample
        self.call(engine.start(name, target_index, target_label))
        start_ts = time.perf_counter()
        try:
            while not stop_evt.wait(0.2):
                if engine.session_id is None:
                    L.info("session ended externally")
                    break
                if duration_s is not None and (time.perf_counter() - start_ts) >= duration_s:
                    L.info("Duration reached (%ss); stopping session", duration_s)
                    break
        except KeyboardInterrupt:
            L.info("Monitoring STOPPED by user (Ctrl+C)")
        finally:
            report = self.call(engine.stop())
        return report

    def stop(self):
        if self._stopped:
            return
        self._stopped = True
        stop_t0 = time.perf_counter()
        stage_t0 = stop_t0

        def _log_stage(name: str):
            nonlocal stage_t0
            now = time.perf_counter()
            L.debug("Shutdown stage=%s elapsed=%.1fms", name, (now - stage_t0) * 1000)
            stage_t0 = now

        def _run_stage(name: str, fn: Callable[[], None]):
            try:
                fn()
            except Exception:
                L.exception("Shutdown stage failed: %s", name)
            finally:
                _log_stage(name)

        def _close_engine():
            if self.engine is not None:
                self.call(self.engine.close())

        def _flush_store():
            # Never overwrite the state file with defaults from a failed startup.
            if self._initialized:
                self.call(self.store.flush())
            self.store.close()

        _run_stage("monitor_engine", _close_engine)
        _run_stage("state_store", _flush_store)
        _run_stage("gateway", lambda: self.call(self.gateway.close()))
        _run_stage("async_loop", self.loop_runner.shutdown_loop)
        L.debug(
            "Shutdown stage=total elapsed=%.1fms",
            (time.perf_counter() - stop_t0) * 1000,
        )

    def __enter__(self) -> "AppRuntime":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()


def build_runtime(
    config: RuntimeBuildConfig,
    *,
    gateway: Gateway,
    camera: BaseCamera,
    estimator_factory: Callable[[str], RoastEstimator],
    loop_runner: LoopRunner | None = None,
) -> AppRuntime:
    return AppRuntime(
        config,
        gateway=gateway,
        camera=camera,
        estimator_factory=estimator_factory,
        loop_runner=loop_runner,
    )


def build_runtime_from_loaded_config(
    cfg: LoadedConfig, *, loop_runner: LoopRunner | None = None
) -> AppRuntime:
    return build_runtime(
        build_runtime_config_from_loaded_config(cfg),
        gateway=create_gateway_from_loaded_config(cfg),
        camera=create_camera_from_loaded_config(cfg),
        estimator_factory=lambda language: create_estimator_from_loaded_config(
            cfg, language=language
        ),
        loop_runner=loop_runner,
    )


__all__ = [
    "AppRuntime",
    "RuntimeBuildConfig",
    "build_runtime",
    "build_runtime_config_from_loaded_config",
    "build_runtime_from_loaded_config",
]
