# -- coding: utf-8 --
"""Folder-backed sampling source: replays bean photos from `image_dir`."""

import logging
import os
import random
import re
import time
from contextlib import contextmanager

import cv2
import numpy as np

from camera.base import BaseCamera, CameraConfig, CaptureResult, register_camera
from utils.timestamps import utc_now

L = logging.getLogger("roast_monitor.camera.mock")

SUPPORTED_EXTS = {".jpg", ".jpeg", ".png", ".bmp", ".webp"}
_ORDER_CHOICES = {"name_asc", "name_desc", "name_natural", "mtime_asc", "random"}
_END_CHOICES = {"loop", "stop", "hold"}


def _natural_key(name: str):
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", name)]


def _resolve_image_dir(path: str) -> str:
    base = str(path or "").strip()
    if not base:
        raise RuntimeError("mock camera requires camera.image_dir")
    base = os.path.abspath(base)
    if not os.path.isdir(base):
        raise RuntimeError(f"mock image_dir not found: {base}")
    return base


def list_images(root_dir: str) -> list[str]:
    return [
        os.path.join(root_dir, name)
        for name in os.listdir(root_dir)
        if os.path.isfile(os.path.join(root_dir, name))
        and os.path.splitext(name)[1].lower() in SUPPORTED_EXTS
    ]


def _sort_images(paths: list[str], order: str, rng: random.Random) -> list[str]:
    if order == "name_asc":
        return sorted(paths, key=lambda p: os.path.basename(p).lower())
    if order == "name_desc":
        return sorted(paths, key=lambda p: os.path.basename(p).lower(), reverse=True)
    if order == "name_natural":
        return sorted(paths, key=lambda p: _natural_key(os.path.basename(p)))
    if order == "mtime_asc":
        return sorted(paths, key=os.path.getmtime)
    shuffled = list(paths)
    rng.shuffle(shuffled)
    return shuffled


def read_image_bgr(path: str) -> np.ndarray:
    """Load an image as 8-bit BGR; falls back to imdecode for non-ASCII paths."""
    arr = cv2.imread(path, cv2.IMREAD_COLOR)
    if arr is None:
        data = np.fromfile(path, dtype=np.uint8)
        if data.size:
            arr = cv2.imdecode(data, cv2.IMREAD_COLOR)
    if arr is None:
        raise RuntimeError(f"opencv_imread_failed: {path}")
    return arr.astype(np.uint8, copy=False)


@register_camera("mock")
class MockCamera(BaseCamera):
    device_id = "mock"

    def __init__(self, cfg: CameraConfig):
        super().__init__(cfg)
        self._paths: list[str] = []
        self._pos = 0
        self._order = str(cfg.order or "name_asc").strip().lower()
        self._end_mode = str(cfg.end_mode or "loop").strip().lower()
        self._rng = random.Random(cfg.seed)

    def _scan(self, root_dir: str):
        if self._order not in _ORDER_CHOICES:
            raise RuntimeError(
                f"mock order must be one of {sorted(_ORDER_CHOICES)}, got {self._order!r}"
            )
        if self._end_mode not in _END_CHOICES:
            raise RuntimeError(
                f"mock end_mode must be one of {sorted(_END_CHOICES)}, got {self._end_mode!r}"
            )
        self._paths = _sort_images(list_images(root_dir), self._order, self._rng)
        if not self._paths:
            raise RuntimeError(f"no images found in {root_dir}")
        self._pos = 0

    def _next_path(self) -> str | None:
        if self._pos < len(self._paths):
            path = self._paths[self._pos]
            self._pos += 1
            return path
        if self._end_mode == "loop":
            if self._order == "random":
                self._paths = _sort_images(self._paths, self._order, self._rng)
            self._pos = 1
            return self._paths[0]
        if self._end_mode == "hold":
            return self._paths[-1]
        return None

    def capture_once(self, idx):
        if not self._open:
            return self._not_open(idx)
        path = self._next_path()
        if not path:
            return CaptureResult(
                seq=idx, device_id=self.device_id, success=False, error="no_more_images"
            )
        start = time.perf_counter()
        try:
            arr = read_image_bgr(path)
        except (RuntimeError, OSError) as e:
            return CaptureResult(
                seq=idx, device_id=self.device_id, success=False, error=f"read_failed: {e}"
            )
        read_ms = (time.perf_counter() - start) * 1000
        L.debug("[%5s] mock @ %s", idx, os.path.basename(path))
        return CaptureResult(
            seq=idx,
            device_id=self.device_id,
            success=True,
            image=arr,
            captured_at=utc_now(),
            timings={"grab_ms": read_ms},
        )

    @contextmanager
    def session(self):
        self._scan(_resolve_image_dir(self.cfg.image_dir))
        self._open = True
        try:
            yield self
        finally:
            self._open = False
            self._paths = []


__all__ = ["MockCamera", "list_images", "read_image_bgr", "SUPPORTED_EXTS"]
