from __future__ import annotations

from datetime import datetime, timedelta, timezone


def coerce_utc_datetime(value: datetime | None) -> datetime:
    ref = value or datetime.now(timezone.utc)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    return ref.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return coerce_utc_datetime(value).isoformat()


def parse_iso(value) -> datetime | None:
    """Parse an ISO-8601 timestamp (as returned by PostgREST) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return coerce_utc_datetime(value)
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return coerce_utc_datetime(datetime.fromisoformat(raw))


def strictly_after(candidate: datetime, previous: datetime | None) -> datetime:
    """Return `candidate`, nudged forward by 1us if it does not follow `previous`."""
    ref = coerce_utc_datetime(candidate)
    if previous is not None and ref <= previous:
        return previous + timedelta(microseconds=1)
    return ref


def format_elapsed(seconds: float) -> str:
    total = max(int(seconds), 0)
    mins, secs = divmod(total, 60)
    return f"{mins:02d}:{secs:02d}"


__all__ = [
    "coerce_utc_datetime",
    "utc_now",
    "to_iso",
    "parse_iso",
    "strictly_after",
    "format_elapsed",
]
