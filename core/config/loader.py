"""YAML loader and section builders for the application configuration."""

from __future__ import annotations

import glob
import os
from typing import Any

import yaml

from .schema import (
    CameraConfigBlock,
    ConfigError,
    DetectConfigBlock,
    GatewayConfigBlock,
    LoadedConfig,
    MonitorConfigBlock,
    RuntimeConfig,
)

_TOP_LEVEL_KEYS = {"runtime", "gateway", "camera", "detect", "monitor"}


def load_config(config_dir: str = "config") -> LoadedConfig:
    main_path = _find_main_config(config_dir)
    main_data = _read_yaml(main_path)
    for key in main_data:
        if key not in _TOP_LEVEL_KEYS:
            raise ConfigError(f"Unknown section '{key}' in {main_path}")

    runtime = _build_dataclass(
        RuntimeConfig, _section(main_data, "runtime", main_path), main_path, "runtime"
    )
    gateway = _build_dataclass(
        GatewayConfigBlock,
        _section(main_data, "gateway", main_path),
        main_path,
        "gateway",
    )
    camera = _build_camera_config(main_data.get("camera"), main_path)
    detect = _build_dataclass(
        DetectConfigBlock, _section(main_data, "detect", main_path), main_path, "detect"
    )
    monitor = _build_dataclass(
        MonitorConfigBlock,
        _section(main_data, "monitor", main_path),
        main_path,
        "monitor",
    )

    paths = {"main": main_path}
    detect_params: dict[str, Any] = {}
    if detect.config_file:
        detect_path = detect.config_file
        if not os.path.isabs(detect_path):
            detect_path = os.path.join(config_dir, detect_path)
        if not os.path.exists(detect_path):
            raise ConfigError(f"Detect config not found: {detect_path}")
        detect_params = _read_yaml(detect_path)
        paths["detect"] = detect_path

    # Relative data paths are anchored at the parent of the config directory.
    base_dir = os.path.dirname(os.path.abspath(config_dir))
    if runtime.state_path and not os.path.isabs(runtime.state_path):
        runtime.state_path = os.path.join(base_dir, runtime.state_path)
    if gateway.session_path and not os.path.isabs(gateway.session_path):
        gateway.session_path = os.path.join(base_dir, gateway.session_path)
    return LoadedConfig(
        runtime=runtime,
        gateway=gateway,
        camera=camera,
        detect=detect,
        monitor=monitor,
        detect_params=detect_params,
        paths=paths,
    )


def _find_main_config(config_dir: str) -> str:
    candidates: list[str] = []
    for pattern in ("main_*.yaml", "main_*.yml"):
        candidates.extend(glob.glob(os.path.join(config_dir, pattern)))
    if len(candidates) == 0:
        raise ConfigError(f"No main_*.yaml found under {config_dir}")
    if len(candidates) > 1:
        raise ConfigError(
            f"Expected exactly one main_*.yaml, found: {', '.join(sorted(candidates))}"
        )
    return candidates[0]


def _read_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"YAML root must be a mapping: {path}")
    return data


def _section(data: dict[str, Any], key: str, main_path: str) -> dict[str, Any]:
    block = data.get(key)
    if block is None:
        return {}
    if not isinstance(block, dict):
        raise ConfigError(f"'{key}' must be a mapping in {main_path}")
    return block


def _build_dataclass(cls, data: dict[str, Any], main_path: str, section: str):
    obj = cls()
    fields = cls.__dataclass_fields__
    for k, v in (data or {}).items():
        if k in fields:
            setattr(obj, k, v)
        else:
            raise ConfigError(f"Unknown field {section}.{k} in {main_path}")
    return obj


def _build_camera_config(data: dict[str, Any] | None, main_path: str) -> CameraConfigBlock:
    """`camera.type` selects the source; shared keys go under `camera.common`
    and source-specific keys under `camera.<type>`."""
    if data is None:
        return CameraConfigBlock()
    if not isinstance(data, dict):
        raise ConfigError(f"'camera' must be a mapping in {main_path}")

    cfg = CameraConfigBlock()
    if "type" in data:
        cfg.type = str(data.get("type") or cfg.type).strip().lower()
    selected_type = cfg.type
    camera_fields = CameraConfigBlock.__dataclass_fields__

    for key, value in data.items():
        if key in {"type", "common"} or isinstance(value, dict):
            continue
        raise ConfigError(
            f"camera.{key} must be nested under camera.common or camera.{selected_type} in {main_path}"
        )

    for section_key in ("common", selected_type):
        block = data.get(section_key)
        if block is None:
            continue
        if not isinstance(block, dict):
            raise ConfigError(f"'camera.{section_key}' must be a mapping in {main_path}")
        for k, v in block.items():
            if k not in camera_fields or k == "type":
                raise ConfigError(f"Unknown field camera.{section_key}.{k} in {main_path}")
            setattr(cfg, k, v)
    return cfg


__all__ = ["load_config"]
