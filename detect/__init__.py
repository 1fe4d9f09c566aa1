from .base import (
    RoastEstimator,
    create_estimator,
    create_estimator_from_loaded_config,
    register_estimator,
)

__all__ = [
    "RoastEstimator",
    "create_estimator",
    "create_estimator_from_loaded_config",
    "register_estimator",
]
