"""Config value validation."""

from __future__ import annotations

from typing import Any

from .schema import ConfigError, LoadedConfig

_GATEWAY_TYPES = ("memory", "supabase")
_LOG_LEVELS = ("debug", "info", "warning", "warn", "error", "critical")


def validate_config(cfg: LoadedConfig) -> None:
    # runtime
    _require_choice("runtime.log_level", str(cfg.runtime.log_level).lower(), _LOG_LEVELS)
    if not str(cfg.runtime.state_path or "").strip():
        raise ConfigError("runtime.state_path must not be empty")

    # gateway
    _require_choice("gateway.type", cfg.gateway.type, _GATEWAY_TYPES)
    _require_float("gateway.timeout_s", cfg.gateway.timeout_s, min_v=0.1)
    _require_bool("gateway.allow_anonymous_writes", cfg.gateway.allow_anonymous_writes)
    if cfg.gateway.type == "supabase" and not str(cfg.gateway.url or "").startswith(
        ("http://", "https://")
    ):
        raise ConfigError("gateway.url must be an http(s) URL for the supabase gateway")

    # camera
    _require_int("camera.device_index", cfg.camera.device_index, min_v=0)
    _require_int("camera.grab_timeout_ms", cfg.camera.grab_timeout_ms, min_v=1)
    _require_int("camera.width", cfg.camera.width, min_v=0)
    _require_int("camera.height", cfg.camera.height, min_v=0)
    if cfg.camera.seed is not None:
        _require_int("camera.seed", cfg.camera.seed, min_v=0)

    # monitor
    _require_float("monitor.sample_period_s", cfg.monitor.sample_period_s, min_v=0.01)
    _require_float("monitor.tick_period_s", cfg.monitor.tick_period_s, min_v=0.01)
    _require_float("monitor.near_target_delta", cfg.monitor.near_target_delta, min_v=0.0)
    _require_float(
        "monitor.default_target_index",
        cfg.monitor.default_target_index,
        min_v=0.0,
        max_v=100.0,
    )


def _require_int(
    name: str, value: Any, *, min_v: int | None = None, max_v: int | None = None
) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        iv = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer") from e
    if min_v is not None and iv < min_v:
        raise ConfigError(f"{name} must be >= {min_v}")
    if max_v is not None and iv > max_v:
        raise ConfigError(f"{name} must be <= {max_v}")
    return iv


def _require_float(
    name: str, value: Any, *, min_v: float | None = None, max_v: float | None = None
) -> float:
    try:
        fv = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number") from e
    if min_v is not None and fv < min_v:
        raise ConfigError(f"{name} must be >= {min_v:g}")
    if max_v is not None and fv > max_v:
        raise ConfigError(f"{name} must be <= {max_v:g}")
    return fv


def _require_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be true or false")
    return value


def _require_choice(name: str, value: Any, choices: tuple[str, ...]) -> str:
    if value not in choices:
        raise ConfigError(f"{name} must be one of {', '.join(choices)}; got {value!r}")
    return value


__all__ = ["validate_config"]
