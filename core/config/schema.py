"""Typed config schema blocks shared by loader/validator/runtime."""

from dataclasses import dataclass, field
from typing import Any, Dict

from core.errors import RoastMonitorError


class ConfigError(RoastMonitorError):
    pass


@dataclass
class RuntimeConfig:
    state_path: str = "data/state.json"
    log_level: str = "info"


@dataclass
class GatewayConfigBlock:
    type: str = "memory"
    url: str = ""
    anon_key: str = ""
    timeout_s: float = 10.0
    allow_anonymous_writes: bool = True
    session_path: str = ""


@dataclass
class CameraConfigBlock:
    type: str = "synthetic"
    device_index: int = 0
    grab_timeout_ms: int = 2000
    width: int = 640
    height: int = 480
    image_dir: str = ""
    order: str = "name_asc"
    end_mode: str = "loop"
    seed: int | None = None


@dataclass
class DetectConfigBlock:
    impl: str = "simulated"
    config_file: str = ""


@dataclass
class MonitorConfigBlock:
    sample_period_s: float = 3.0
    tick_period_s: float = 1.0
    near_target_delta: float = 5.0
    default_target_index: float = 65.0


@dataclass
class LoadedConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    gateway: GatewayConfigBlock = field(default_factory=GatewayConfigBlock)
    camera: CameraConfigBlock = field(default_factory=CameraConfigBlock)
    detect: DetectConfigBlock = field(default_factory=DetectConfigBlock)
    monitor: MonitorConfigBlock = field(default_factory=MonitorConfigBlock)
    detect_params: Dict[str, Any] = field(default_factory=dict)
    paths: Dict[str, str] = field(default_factory=dict)


__all__ = [
    "ConfigError",
    "RuntimeConfig",
    "GatewayConfigBlock",
    "CameraConfigBlock",
    "DetectConfigBlock",
    "MonitorConfigBlock",
    "LoadedConfig",
]
