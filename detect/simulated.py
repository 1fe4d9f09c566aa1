import logging
import random

from core.contracts import RoastEstimate
from core.roast import advisory_for, label_for_index

from .base import register_estimator

L = logging.getLogger("roast_monitor.detection.simulated")

INDEX_FLOOR = 20
INDEX_CEIL = 95


@register_estimator("simulated")
class SimulatedEstimator:
    """Demo generator: ignores the frame and scatters readings around the target.

    index = clamp(round(target + U(-spread/2, spread/2)), 20, 95)
    confidence ~ U(0.85, 0.95), temperature ~ U(180, 220) degC
    """

    def __init__(self, params: dict, language: str = "zh"):
        self.spread = float(params.get("spread", 20.0))
        self.default_target = float(params.get("default_target", 65.0))
        self.temperature_range = tuple(params.get("temperature_range", (180.0, 220.0)))
        self.language = language
        self._rng = random.Random(params.get("seed"))
        if self.spread < 0:
            raise ValueError("detect spread must be >= 0")
        if len(self.temperature_range) != 2:
            raise ValueError("detect temperature_range must be [low, high]")

    def estimate(self, img=None, *, target_index=None):
        center = self.default_target if target_index is None else float(target_index)
        raw = center + (self._rng.random() - 0.5) * self.spread
        index = float(max(INDEX_FLOOR, min(INDEX_CEIL, round(raw))))
        label = label_for_index(index)
        low, high = (float(v) for v in self.temperature_range)
        return RoastEstimate(
            roast_index=index,
            roast_label=label,
            confidence=round(0.85 + self._rng.random() * 0.1, 3),
            advisory=advisory_for(label, self.language),
            temperature=round(low + self._rng.random() * (high - low), 1),
        )


__all__ = ["SimulatedEstimator", "INDEX_FLOOR", "INDEX_CEIL"]
