import csv
import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from core.contracts import DetectionRecord
from core.errors import PersistenceError, ValidationError
from core.roast import RoastLevel
from store.selectors import (
    CSV_HEADER,
    SORT_KEYS,
    detection_stats,
    export_records_csv,
    query_records,
)

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _record(rid, index, label, confidence, minutes, advisory=""):
    return DetectionRecord(
        id=rid,
        image_ref=f"{rid}.jpg",
        roast_index=index,
        roast_label=label,
        confidence=confidence,
        advisory=advisory,
        created_at=T0 + timedelta(minutes=minutes),
    )


RECORDS = [
    _record("a", 66, RoastLevel.MEDIUM, 0.91, 3, "balanced body"),
    _record("b", 45, RoastLevel.DARK, 0.80, 1, "bold"),
    _record("c", 72.5, RoastLevel.MEDIUM_LIGHT, 0.95, 2),
    _record("d", 44, RoastLevel.DARK, 0.70, 0),
]


class TestDetectionStats(unittest.TestCase):
    def test_empty_history(self):
        stats = detection_stats([])
        self.assertEqual(stats.total, 0)
        self.assertEqual(stats.average_index, 0.0)
        self.assertIsNone(stats.most_common_label)
        self.assertEqual(stats.average_confidence, 0.0)

    def test_averages_are_rounded(self):
        stats = detection_stats(RECORDS)
        self.assertEqual(stats.total, 4)
        self.assertEqual(stats.average_index, 56.9)
        self.assertEqual(stats.average_confidence, 0.84)
        self.assertEqual(stats.most_common_label, RoastLevel.DARK)

    def test_most_common_tie_goes_to_first_seen(self):
        stats = detection_stats(RECORDS[:3])
        self.assertEqual(stats.most_common_label, RoastLevel.MEDIUM)


class TestQueryRecords(unittest.TestCase):
    def ids(self, rows):
        return [r.id for r in rows]

    def test_sort_orders(self):
        expected = {
            "newest": ["a", "c", "b", "d"],
            "oldest": ["d", "b", "c", "a"],
            "index_asc": ["d", "b", "a", "c"],
            "index_desc": ["c", "a", "b", "d"],
            "confidence": ["c", "a", "b", "d"],
        }
        self.assertEqual(set(expected), set(SORT_KEYS))
        for sort, ids in expected.items():
            with self.subTest(sort=sort):
                self.assertEqual(self.ids(query_records(RECORDS, sort=sort)), ids)

    def test_search_matches_label_english_advisory_and_index(self):
        cases = {
            "深烘": ["b", "d"],
            "MEDIUM": ["a", "c"],
            "balanced": ["a"],
            "72.5": ["c"],
            "nothing": [],
        }
        for needle, ids in cases.items():
            with self.subTest(search=needle):
                rows = query_records(RECORDS, search=needle)
                self.assertEqual(self.ids(rows), ids)

    def test_label_filter_accepts_value_or_enum(self):
        for label in ("深烘", RoastLevel.DARK):
            with self.subTest(label=label):
                rows = query_records(RECORDS, label=label, sort="oldest")
                self.assertEqual(self.ids(rows), ["d", "b"])

    def test_input_is_not_mutated(self):
        rows = list(RECORDS)
        query_records(rows, sort="index_asc")
        self.assertEqual(rows, RECORDS)

    def test_invalid_arguments(self):
        with self.assertRaises(ValidationError):
            query_records(RECORDS, sort="random")
        with self.assertRaises(ValidationError):
            query_records(RECORDS, label="caramel")


class TestExportRecordsCsv(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "out", "records.csv")

    def tearDown(self):
        self.tmp.cleanup()

    def _read(self) -> list[list[str]]:
        with open(self.path, "r", encoding="utf-8-sig", newline="") as f:
            return list(csv.reader(f))

    def test_filtered_records_round_trip(self):
        rows = query_records(
            RECORDS + [_record("e", 41, RoastLevel.DARK, 0.876, 4, "浓郁, 适合意式，加奶")],
            label="深烘",
        )
        self.assertEqual(export_records_csv(rows, self.path), 3)

        header, *lines = self._read()
        self.assertEqual(tuple(header), CSV_HEADER)
        self.assertEqual([line[0] for line in lines], ["e", "b", "d"])
        self.assertEqual(
            lines[0],
            ["e", "2024-03-01 00:04:00Z", "41", "深烘", "87.6%", "浓郁, 适合意式，加奶"],
        )

    def test_empty_export_writes_header_only(self):
        self.assertEqual(export_records_csv([], self.path), 0)
        self.assertEqual(self._read(), [list(CSV_HEADER)])

    def test_unwritable_path_raises_persistence_error(self):
        blocker = os.path.join(self.tmp.name, "file")
        with open(blocker, "w") as f:
            f.write("x")
        with self.assertRaises(PersistenceError):
            export_records_csv(RECORDS, os.path.join(blocker, "records.csv"))


if __name__ == "__main__":
    unittest.main()
