import logging

import cv2
import numpy as np

from core.contracts import RoastEstimate
from core.roast import ROAST_INDEX_MAX, ROAST_INDEX_MIN, advisory_for, label_for_index

from .base import register_estimator

L = logging.getLogger("roast_monitor.detection.lightness")


def bean_lightness(
    img: np.ndarray, background_l: float = 92.0
) -> tuple[float, float, float]:
    """
    Measure bean lightness on the CIE L* scale (0..100).
    Pixels brighter than `background_l` are treated as tray/background.
    Returns (mean_l, std_l, bean_fraction).
    """
    if img.ndim == 2:
        bgr = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    else:
        bgr = img[:, :, :3]
    lab = cv2.cvtColor(bgr.astype(np.uint8, copy=False), cv2.COLOR_BGR2LAB)
    # OpenCV stores 8-bit L* scaled to 0..255.
    l_star = lab[:, :, 0].astype(np.float32) * (100.0 / 255.0)
    mask = l_star < background_l
    fraction = float(mask.mean())
    if not mask.any():
        return float(l_star.mean()), float(l_star.std()), 0.0
    beans = l_star[mask]
    return float(beans.mean()), float(beans.std()), fraction


@register_estimator("lightness")
class LightnessEstimator:
    """Maps mean bean L* linearly onto the roast index between two anchors."""

    def __init__(self, params: dict, language: str = "zh"):
        self.l_dark = float(params.get("l_dark", 12.0))
        self.l_light = float(params.get("l_light", 62.0))
        self.index_dark = float(params.get("index_dark", 20.0))
        self.index_light = float(params.get("index_light", 95.0))
        self.background_l = float(params.get("background_l", 92.0))
        self.spread_scale = float(params.get("spread_scale", 25.0))
        self.min_bean_fraction = float(params.get("min_bean_fraction", 0.2))
        self.language = language
        self._validate()

    def estimate(self, img, *, target_index=None):
        if img is None:
            raise ValueError("lightness estimator needs an image")
        mean_l, std_l, fraction = bean_lightness(img, self.background_l)
        ratio = (mean_l - self.l_dark) / (self.l_light - self.l_dark)
        index = self.index_dark + ratio * (self.index_light - self.index_dark)
        index = round(float(np.clip(index, ROAST_INDEX_MIN, ROAST_INDEX_MAX)), 1)

        # Uneven colour or too little bean area both lower confidence.
        confidence = 1.0 - min(std_l / self.spread_scale, 1.0) * 0.5
        if fraction < self.min_bean_fraction:
            confidence *= fraction / self.min_bean_fraction
        confidence = round(float(np.clip(confidence, 0.0, 1.0)), 3)

        label = label_for_index(index)
        L.debug(
            "L*=%.2f std=%.2f beans=%.2f -> index=%.1f %s",
            mean_l,
            std_l,
            fraction,
            index,
            label.value,
        )
        return RoastEstimate(
            roast_index=index,
            roast_label=label,
            confidence=confidence,
            advisory=advisory_for(label, self.language),
        )

    def _validate(self):
        if not (0.0 <= self.l_dark < self.l_light <= 100.0):
            raise ValueError("detect l_dark/l_light must satisfy 0 <= l_dark < l_light <= 100")
        if not (0.0 < self.background_l <= 100.0):
            raise ValueError("detect background_l must be in (0, 100]")
        if self.spread_scale <= 0:
            raise ValueError("detect spread_scale must be > 0")
        if not (0.0 < self.min_bean_fraction <= 1.0):
            raise ValueError("detect min_bean_fraction must be in (0, 1]")


__all__ = ["LightnessEstimator", "bean_lightness"]
