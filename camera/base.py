# -- coding: utf-8 --

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Type

from core.contracts import CaptureResult
from core.registry import register_named, resolve_registered

CameraFactory = Dict[str, Type["BaseCamera"]]
_registry: CameraFactory = {}


@dataclass
class CameraConfig:
    device_index: int = 0
    timeout_ms: int = 2000
    width: int = 0
    height: int = 0
    image_dir: str = ""
    order: str = "name_asc"
    end_mode: str = "loop"
    seed: int | None = None


def build_camera_config(cfg_block) -> CameraConfig:
    return CameraConfig(
        device_index=int(cfg_block.device_index),
        timeout_ms=int(cfg_block.grab_timeout_ms),
        width=int(cfg_block.width),
        height=int(cfg_block.height),
        image_dir=str(cfg_block.image_dir or ""),
        order=str(cfg_block.order or "name_asc"),
        end_mode=str(cfg_block.end_mode or "loop"),
        seed=None if cfg_block.seed is None else int(cfg_block.seed),
    )


class BaseCamera(ABC):
    """A sampling source. `session()` acquires the device for the duration of
    a monitoring run; `capture_once()` is only valid inside it."""

    device_id = "camera"

    def __init__(self, cfg: CameraConfig):
        self.cfg = cfg
        self.lock = threading.Lock()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @abstractmethod
    def capture_once(self, idx: int) -> CaptureResult:
        """Perform a single capture, returning CaptureResult."""

    @contextmanager
    @abstractmethod
    def session(self):
        """Manage camera lifecycle."""
        yield

    def _not_open(self, idx: int) -> CaptureResult:
        return CaptureResult(
            seq=idx, device_id=self.device_id, success=False, error="camera_not_started"
        )


def register_camera(name: str):
    return register_named(_registry, name)


def create_camera(name: str, cfg: CameraConfig) -> BaseCamera:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "camera",
        unknown_label="camera type",
    )
    return cls(cfg)


def create_camera_from_loaded_config(cfg) -> BaseCamera:
    return create_camera(cfg.camera.type, build_camera_config(cfg.camera))


__all__ = [
    "CameraConfig",
    "CaptureResult",
    "build_camera_config",
    "BaseCamera",
    "register_camera",
    "create_camera",
    "create_camera_from_loaded_config",
]
