"""Config package facade."""

from .loader import load_config
from .schema import (
    CameraConfigBlock,
    ConfigError,
    DetectConfigBlock,
    GatewayConfigBlock,
    LoadedConfig,
    MonitorConfigBlock,
    RuntimeConfig,
)
from .validate import validate_config

__all__ = [
    "ConfigError",
    "LoadedConfig",
    "RuntimeConfig",
    "GatewayConfigBlock",
    "CameraConfigBlock",
    "DetectConfigBlock",
    "MonitorConfigBlock",
    "load_config",
    "validate_config",
]
