# -- coding: utf-8 --
"""Generated frames of bean-brown noise; darkens slowly to mimic a roast."""

import logging
from contextlib import contextmanager

import numpy as np

from camera.base import BaseCamera, CameraConfig, CaptureResult, register_camera
from utils.timestamps import utc_now

L = logging.getLogger("roast_monitor.camera.synthetic")

# BGR of green coffee and of a very dark roast; frames interpolate between them.
_GREEN_BEAN_BGR = np.array([120.0, 170.0, 190.0])
_DARK_ROAST_BGR = np.array([20.0, 28.0, 40.0])


@register_camera("synthetic")
class SyntheticCamera(BaseCamera):
    device_id = "synthetic"

    def __init__(self, cfg: CameraConfig, *, darken_per_frame: float = 0.01):
        super().__init__(cfg)
        self._rng = np.random.default_rng(cfg.seed)
        self._darken_per_frame = float(darken_per_frame)
        self._progress = 0.0
        self._width = int(cfg.width) or 160
        self._height = int(cfg.height) or 120

    def _frame(self) -> np.ndarray:
        base = _GREEN_BEAN_BGR + (_DARK_ROAST_BGR - _GREEN_BEAN_BGR) * self._progress
        noise = self._rng.normal(0.0, 6.0, size=(self._height, self._width, 3))
        return np.clip(base + noise, 0, 255).astype(np.uint8)

    def capture_once(self, idx):
        if not self._open:
            return self._not_open(idx)
        with self.lock:
            frame = self._frame()
            self._progress = min(1.0, self._progress + self._darken_per_frame)
        return CaptureResult(
            seq=idx,
            device_id=self.device_id,
            success=True,
            image=frame,
            captured_at=utc_now(),
        )

    @contextmanager
    def session(self):
        self._progress = 0.0
        self._open = True
        L.debug("synthetic camera opened %dx%d", self._width, self._height)
        try:
            yield self
        finally:
            self._open = False


__all__ = ["SyntheticCamera"]
