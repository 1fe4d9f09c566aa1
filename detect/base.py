import logging
from typing import Callable, Dict, Protocol

import numpy as np

from core.contracts import RoastEstimate
from core.registry import register_named, resolve_registered

L = logging.getLogger("roast_monitor.detection")


class RoastEstimator(Protocol):
    def estimate(
        self, img: np.ndarray | None, *, target_index: float | None = None
    ) -> RoastEstimate:
        """Score one frame. `target_index` is a hint some estimators centre on."""
        ...


_registry: Dict[str, Callable[..., RoastEstimator]] = {}


def register_estimator(name: str):
    return register_named(_registry, name)


def create_estimator(
    name: str,
    params: dict | None = None,
    *,
    language: str = "zh",
) -> RoastEstimator:
    factory = resolve_registered(
        _registry,
        name,
        package=__package__ or "detect",
        unknown_label="roast estimator",
    )
    return factory(params or {}, language=language)


def create_estimator_from_loaded_config(cfg, *, language: str = "zh") -> RoastEstimator:
    return create_estimator(cfg.detect.impl, cfg.detect_params or {}, language=language)


__all__ = [
    "RoastEstimator",
    "register_estimator",
    "create_estimator",
    "create_estimator_from_loaded_config",
]
