import unittest

from core.errors import ValidationError
from core.roast import (
    RoastLevel,
    advisory_for,
    is_near_target,
    label_for_index,
    parse_roast_level,
    roast_levels,
)


class TestRoastScale(unittest.TestCase):
    def test_index_bands(self):
        cases = [
            (100, RoastLevel.EXTRA_LIGHT),
            (90, RoastLevel.EXTRA_LIGHT),
            (89.9, RoastLevel.LIGHT),
            (80, RoastLevel.LIGHT),
            (79, RoastLevel.MEDIUM_LIGHT),
            (70, RoastLevel.MEDIUM_LIGHT),
            (65, RoastLevel.MEDIUM),
            (60, RoastLevel.MEDIUM),
            (59.5, RoastLevel.MEDIUM_DARK),
            (50, RoastLevel.MEDIUM_DARK),
            (45, RoastLevel.DARK),
            (40, RoastLevel.DARK),
            (39.9, RoastLevel.EXTRA_DARK),
            (20, RoastLevel.EXTRA_DARK),
        ]
        for index, expected in cases:
            with self.subTest(index=index):
                self.assertEqual(label_for_index(index), expected)

    def test_levels_are_ordered_light_to_dark(self):
        levels = roast_levels()
        self.assertEqual(len(levels), 7)
        self.assertEqual(levels[0], RoastLevel.EXTRA_LIGHT)
        self.assertEqual(levels[-1], RoastLevel.EXTRA_DARK)
        self.assertEqual([lv.rank for lv in levels], list(range(7)))

    def test_parse_accepts_label_name_and_english(self):
        self.assertEqual(parse_roast_level("中烘"), RoastLevel.MEDIUM)
        self.assertEqual(parse_roast_level("MEDIUM_DARK"), RoastLevel.MEDIUM_DARK)
        self.assertEqual(parse_roast_level("medium dark"), RoastLevel.MEDIUM_DARK)
        self.assertEqual(parse_roast_level(RoastLevel.DARK), RoastLevel.DARK)

    def test_parse_rejects_unknown_label(self):
        for bad in ("", "espresso", None):
            with self.subTest(value=bad):
                with self.assertRaises(ValidationError):
                    parse_roast_level(bad)

    def test_advisory_language(self):
        zh = advisory_for(RoastLevel.MEDIUM, "zh")
        en = advisory_for(RoastLevel.MEDIUM, "en")
        self.assertIn("手冲", zh)
        self.assertIn("pour-over", en)

    def test_near_target_is_inclusive(self):
        self.assertTrue(is_near_target(70, 65))
        self.assertTrue(is_near_target(60, 65))
        self.assertFalse(is_near_target(70.1, 65))
        self.assertTrue(is_near_target(68, 65, delta=3))


if __name__ == "__main__":
    unittest.main()
