"""Read-only views over detection history, plus its CSV export."""

from __future__ import annotations

import csv
import os
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from core.contracts import DetectionRecord
from core.errors import PersistenceError, ValidationError
from core.roast import RoastLevel, parse_roast_level
from utils.timestamps import coerce_utc_datetime

SORT_KEYS = ("newest", "oldest", "index_asc", "index_desc", "confidence")


@dataclass(frozen=True)
class DetectionStats:
    total: int
    average_index: float
    most_common_label: RoastLevel | None
    average_confidence: float


def detection_stats(records: Iterable[DetectionRecord]) -> DetectionStats:
    rows = list(records)
    if not rows:
        return DetectionStats(0, 0.0, None, 0.0)
    total = len(rows)
    counts = Counter(r.roast_label for r in rows)
    # Ties go to the label seen first (newest record first).
    most_common = max(counts, key=lambda label: counts[label])
    return DetectionStats(
        total=total,
        average_index=round(sum(r.roast_index for r in rows) / total, 1),
        most_common_label=most_common,
        average_confidence=round(sum(r.confidence for r in rows) / total, 2),
    )


def _matches(record: DetectionRecord, needle: str) -> bool:
    haystack = (
        record.roast_label.value,
        record.roast_label.english,
        record.advisory,
        f"{record.roast_index:g}",
    )
    return any(needle in field.lower() for field in haystack)


def query_records(
    records: Iterable[DetectionRecord],
    *,
    search: str = "",
    label: str | RoastLevel | None = None,
    sort: str = "newest",
) -> list[DetectionRecord]:
    if sort not in SORT_KEYS:
        raise ValidationError(f"sort must be one of {', '.join(SORT_KEYS)}")
    rows = list(records)
    needle = str(search or "").strip().lower()
    if needle:
        rows = [r for r in rows if _matches(r, needle)]
    if label:
        level = parse_roast_level(label)
        rows = [r for r in rows if r.roast_label == level]

    if sort == "newest":
        rows.sort(key=lambda r: r.created_at, reverse=True)
    elif sort == "oldest":
        rows.sort(key=lambda r: r.created_at)
    elif sort == "index_asc":
        rows.sort(key=lambda r: r.roast_index)
    elif sort == "index_desc":
        rows.sort(key=lambda r: r.roast_index, reverse=True)
    else:
        rows.sort(key=lambda r: r.confidence, reverse=True)
    return rows


CSV_HEADER = ("id", "time", "roast_index", "roast_label", "confidence", "advisory")


def export_records_csv(records: Iterable[DetectionRecord], path: str) -> int:
    """Write records (typically a `query_records` result) as UTF-8 CSV; returns the row count.

    The BOM lets spreadsheet tools detect UTF-8 for the Chinese labels.
    """
    rows = list(records)
    try:
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8-sig", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for r in rows:
                writer.writerow(
                    (
                        r.id,
                        coerce_utc_datetime(r.created_at).strftime("%Y-%m-%d %H:%M:%SZ"),
                        f"{r.roast_index:g}",
                        r.roast_label.value,
                        f"{r.confidence * 100:.1f}%",
                        r.advisory,
                    )
                )
    except OSError as e:
        raise PersistenceError(f"cannot export records to {path}: {e}") from e
    return len(rows)


__all__ = [
    "CSV_HEADER",
    "DetectionStats",
    "SORT_KEYS",
    "detection_stats",
    "export_records_csv",
    "query_records",
]
