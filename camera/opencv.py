# -- coding: utf-8 --
"""Capture device (USB / built-in webcam) through cv2.VideoCapture."""

import logging
import time
from contextlib import contextmanager

import cv2

from camera.base import BaseCamera, CameraConfig, CaptureResult, register_camera
from utils.timestamps import utc_now

L = logging.getLogger("roast_monitor.camera.opencv")


@register_camera("opencv")
class OpenCvCamera(BaseCamera):
    device_id = "opencv"

    def __init__(self, cfg: CameraConfig):
        super().__init__(cfg)
        self._cap: cv2.VideoCapture | None = None

    def _configure(self, cap: cv2.VideoCapture):
        if self.cfg.width and self.cfg.height:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(self.cfg.width))
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(self.cfg.height))

    def capture_once(self, idx):
        cap = self._cap
        if cap is None:
            return self._not_open(idx)
        deadline = time.perf_counter() + self.cfg.timeout_ms / 1000.0
        start = time.perf_counter()
        with self.lock:
            ok, frame = cap.read()
            while not ok and time.perf_counter() < deadline:
                time.sleep(0.02)
                ok, frame = cap.read()
        if not ok or frame is None:
            return CaptureResult(
                seq=idx, device_id=self.device_id, success=False, error="grab_timeout"
            )
        return CaptureResult(
            seq=idx,
            device_id=self.device_id,
            success=True,
            image=frame,
            captured_at=utc_now(),
            timings={"grab_ms": (time.perf_counter() - start) * 1000},
        )

    @contextmanager
    def session(self):
        cap = cv2.VideoCapture(int(self.cfg.device_index))
        if not cap.isOpened():
            cap.release()
            raise RuntimeError(f"cannot open capture device {self.cfg.device_index}")
        self._configure(cap)
        self._cap = cap
        self._open = True
        L.info("capture device %s opened", self.cfg.device_index)
        try:
            yield self
        finally:
            self._open = False
            self._cap = None
            cap.release()
            L.info("capture device %s released", self.cfg.device_index)


__all__ = ["OpenCvCamera"]
