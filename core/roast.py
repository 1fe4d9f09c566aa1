"""Roast level scale: seven ordered labels over the roast index."""

from __future__ import annotations

from enum import Enum

from core.errors import ValidationError

ROAST_INDEX_MIN = 0.0
ROAST_INDEX_MAX = 100.0


class RoastLevel(str, Enum):
    # Ordered light -> dark; values are the stored labels.
    EXTRA_LIGHT = "极浅烘"
    LIGHT = "浅烘"
    MEDIUM_LIGHT = "中浅烘"
    MEDIUM = "中烘"
    MEDIUM_DARK = "中深烘"
    DARK = "深烘"
    EXTRA_DARK = "极深烘"

    @property
    def english(self) -> str:
        return _ENGLISH[self]

    @property
    def rank(self) -> int:
        return _ORDER.index(self)


_ORDER: tuple[RoastLevel, ...] = tuple(RoastLevel)

_ENGLISH = {
    RoastLevel.EXTRA_LIGHT: "extra light",
    RoastLevel.LIGHT: "light",
    RoastLevel.MEDIUM_LIGHT: "medium light",
    RoastLevel.MEDIUM: "medium",
    RoastLevel.MEDIUM_DARK: "medium dark",
    RoastLevel.DARK: "dark",
    RoastLevel.EXTRA_DARK: "extra dark",
}

# Lower bound (inclusive) of each band; anything below the last bound is EXTRA_DARK.
# Bands are 10 points wide so EXTRA_LIGHT gets its own >= 90 band instead of
# folding every index >= 80 into LIGHT; the simulated generator (max 95) can
# therefore report EXTRA_LIGHT for very light targets.
_BANDS: tuple[tuple[float, RoastLevel], ...] = (
    (90.0, RoastLevel.EXTRA_LIGHT),
    (80.0, RoastLevel.LIGHT),
    (70.0, RoastLevel.MEDIUM_LIGHT),
    (60.0, RoastLevel.MEDIUM),
    (50.0, RoastLevel.MEDIUM_DARK),
    (40.0, RoastLevel.DARK),
)

_ADVISORY = {
    RoastLevel.EXTRA_LIGHT: (
        "酸质明亮，花香突出，适合手冲，建议使用较高水温",
        "Bright acidity and floral notes; brew as pour-over with hotter water.",
    ),
    RoastLevel.LIGHT: (
        "明亮的酸味，果香突出，适合手冲或虹吸壶",
        "Bright acidity with fruity notes; suits pour-over or siphon.",
    ),
    RoastLevel.MEDIUM_LIGHT: (
        "酸甜平衡，适合手冲或爱乐压，建议研磨度为中细",
        "Balanced sweetness and acidity; suits pour-over or AeroPress, medium-fine grind.",
    ),
    RoastLevel.MEDIUM: (
        "适合制作手冲咖啡，建议研磨度为中粗",
        "Good for pour-over coffee; use a medium-coarse grind.",
    ),
    RoastLevel.MEDIUM_DARK: (
        "苦甜平衡，适合制作意式浓缩咖啡",
        "Bittersweet balance; well suited to espresso.",
    ),
    RoastLevel.DARK: (
        "醇厚度高，适合意式浓缩或加奶饮品",
        "Heavy body; suits espresso and milk drinks.",
    ),
    RoastLevel.EXTRA_DARK: (
        "焦苦味明显，建议缩短萃取时间或用于冷萃",
        "Pronounced roast bitterness; shorten extraction or use for cold brew.",
    ),
}


def roast_levels() -> tuple[RoastLevel, ...]:
    return _ORDER


def parse_roast_level(value) -> RoastLevel:
    """Accept a RoastLevel, its stored label, its member name or its English name."""
    if isinstance(value, RoastLevel):
        return value
    raw = str(value or "").strip()
    for level in _ORDER:
        if raw in (level.value, level.name) or raw.lower() == level.english:
            return level
        if raw.upper().replace(" ", "_") == level.name:
            return level
    raise ValidationError(
        f"unknown roast level {value!r}; expected one of "
        f"{', '.join(level.value for level in _ORDER)}"
    )


def label_for_index(roast_index: float) -> RoastLevel:
    value = float(roast_index)
    for lower, level in _BANDS:
        if value >= lower:
            return level
    return RoastLevel.EXTRA_DARK


def advisory_for(level: RoastLevel, language: str = "zh") -> str:
    zh, en = _ADVISORY[parse_roast_level(level)]
    return en if str(language).lower().startswith("en") else zh


def is_near_target(roast_index: float, target_index: float, delta: float = 5.0) -> bool:
    return abs(float(roast_index) - float(target_index)) <= float(delta)


__all__ = [
    "ROAST_INDEX_MIN",
    "ROAST_INDEX_MAX",
    "RoastLevel",
    "roast_levels",
    "parse_roast_level",
    "label_for_index",
    "advisory_for",
    "is_near_target",
]
