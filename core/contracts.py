"""Data contracts for captures, estimates, and the synchronized domain entities."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any

from core.errors import ValidationError
from core.roast import RoastLevel, parse_roast_level
from utils.timestamps import parse_iso, to_iso


@dataclass(slots=True)
class CaptureResult:
    seq: int = 0
    device_id: str = ""
    success: bool = False
    error: str | None = None
    image: Any | None = None  # runtime np.ndarray (BGR)
    captured_at: datetime | None = None
    timings: dict[str, float] | None = None


@dataclass(slots=True)
class RoastEstimate:
    roast_index: float
    roast_label: RoastLevel
    confidence: float
    advisory: str = ""
    temperature: float | None = None


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


def _require_confidence(value: Any) -> float:
    try:
        conf = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"confidence must be a number, got {value!r}") from e
    if math.isnan(conf) or not (0.0 <= conf <= 1.0):
        raise ValidationError(f"confidence must be in [0, 1], got {conf}")
    return conf


def _require_index(name: str, value: Any) -> float:
    try:
        idx = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a number, got {value!r}") from e
    if math.isnan(idx) or math.isinf(idx):
        raise ValidationError(f"{name} must be finite")
    return idx


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def _required_time(row: dict[str, Any], key: str) -> datetime:
    value = parse_iso(row.get(key))
    if value is None:
        raise ValidationError(f"missing {key}")
    return value


@dataclass(slots=True)
class DetectionDraft:
    """A detection result that has not been assigned an id by the backend."""

    image_ref: str
    roast_index: float
    roast_label: RoastLevel
    confidence: float
    advisory: str = ""

    def __post_init__(self):
        self.image_ref = str(self.image_ref or "")
        self.roast_index = _require_index("roast_index", self.roast_index)
        self.roast_label = parse_roast_level(self.roast_label)
        self.confidence = _require_confidence(self.confidence)
        self.advisory = str(self.advisory or "")

    @classmethod
    def from_estimate(cls, estimate: RoastEstimate, image_ref: str) -> "DetectionDraft":
        return cls(
            image_ref=image_ref,
            roast_index=estimate.roast_index,
            roast_label=estimate.roast_label,
            confidence=estimate.confidence,
            advisory=estimate.advisory,
        )

    def to_row(self, owner_id: str | None) -> dict[str, Any]:
        return {
            "owner_id": owner_id,
            "image_ref": self.image_ref,
            "roast_index": self.roast_index,
            "roast_label": self.roast_label.value,
            "confidence": self.confidence,
            "advisory": self.advisory,
        }


@dataclass(slots=True)
class DetectionRecord:
    id: str
    image_ref: str
    roast_index: float
    roast_label: RoastLevel
    confidence: float
    advisory: str
    created_at: datetime
    owner_id: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "image_ref": self.image_ref,
            "roast_index": self.roast_index,
            "roast_label": self.roast_label.value,
            "confidence": self.confidence,
            "advisory": self.advisory,
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DetectionRecord":
        try:
            return cls(
                id=str(row["id"]),
                owner_id=row.get("owner_id"),
                image_ref=str(row.get("image_ref") or ""),
                roast_index=_require_index("roast_index", row["roast_index"]),
                roast_label=parse_roast_level(row["roast_label"]),
                confidence=_require_confidence(row["confidence"]),
                advisory=str(row.get("advisory") or ""),
                created_at=_required_time(row, "created_at"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"malformed detection record: {e}") from e


@dataclass(slots=True)
class MonitorSnapshot:
    id: str
    session_id: str
    roast_index: float
    roast_label: RoastLevel
    confidence: float
    timestamp: datetime
    temperature: float | None = None

    def to_row(self, *, include_id: bool = True) -> dict[str, Any]:
        row = {
            "session_id": self.session_id,
            "roast_index": self.roast_index,
            "roast_label": self.roast_label.value,
            "temperature": self.temperature,
            "confidence": self.confidence,
            "timestamp": to_iso(self.timestamp),
        }
        if include_id:
            row = {"id": self.id, **row}
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MonitorSnapshot":
        try:
            return cls(
                id=str(row["id"]),
                session_id=str(row["session_id"]),
                roast_index=_require_index("roast_index", row["roast_index"]),
                roast_label=parse_roast_level(row["roast_label"]),
                confidence=_require_confidence(row["confidence"]),
                temperature=_optional_float(row.get("temperature")),
                timestamp=_required_time(row, "timestamp"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"malformed monitor snapshot: {e}") from e


@dataclass(slots=True)
class MonitorSessionDraft:
    name: str
    target_roast_index: float
    target_roast_label: RoastLevel
    start_time: datetime
    status: SessionStatus = SessionStatus.ACTIVE

    def __post_init__(self):
        self.name = str(self.name or "").strip()
        if not self.name:
            raise ValidationError("session name must not be empty")
        self.target_roast_index = _require_index(
            "target_roast_index", self.target_roast_index
        )
        self.target_roast_label = parse_roast_level(self.target_roast_label)
        self.status = SessionStatus(self.status)

    def to_row(self, owner_id: str | None) -> dict[str, Any]:
        return {
            "owner_id": owner_id,
            "name": self.name,
            "target_roast_index": self.target_roast_index,
            "target_roast_label": self.target_roast_label.value,
            "start_time": to_iso(self.start_time),
            "end_time": None,
            "status": self.status.value,
        }


@dataclass(slots=True)
class MonitorSession:
    id: str
    name: str
    target_roast_index: float
    target_roast_label: RoastLevel
    start_time: datetime
    status: SessionStatus
    created_at: datetime
    owner_id: str | None = None
    end_time: datetime | None = None
    snapshots: list[MonitorSnapshot] = field(default_factory=list)

    def to_row(self, *, with_snapshots: bool = False) -> dict[str, Any]:
        row: dict[str, Any] = {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "target_roast_index": self.target_roast_index,
            "target_roast_label": self.target_roast_label.value,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "status": self.status.value,
            "created_at": to_iso(self.created_at),
        }
        if with_snapshots:
            row["snapshots"] = [snap.to_row() for snap in self.snapshots]
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MonitorSession":
        try:
            return cls(
                id=str(row["id"]),
                owner_id=row.get("owner_id"),
                name=str(row["name"]),
                target_roast_index=_require_index(
                    "target_roast_index", row["target_roast_index"]
                ),
                target_roast_label=parse_roast_level(row["target_roast_label"]),
                start_time=_required_time(row, "start_time"),
                end_time=parse_iso(row.get("end_time")),
                status=SessionStatus(row["status"]),
                created_at=parse_iso(row.get("created_at"))
                or _required_time(row, "start_time"),
                snapshots=[
                    MonitorSnapshot.from_row(snap) for snap in row.get("snapshots") or []
                ],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"malformed monitor session: {e}") from e


LANGUAGES = ("zh", "en")
THEMES = ("light", "dark")


@dataclass(slots=True)
class Settings:
    language: str = "zh"
    theme: str = "light"
    auto_save: bool = True
    notifications: bool = True
    default_roast_label: RoastLevel = RoastLevel.MEDIUM

    def __post_init__(self):
        if self.language not in LANGUAGES:
            raise ValidationError(f"language must be one of {LANGUAGES}")
        if self.theme not in THEMES:
            raise ValidationError(f"theme must be one of {THEMES}")
        if not isinstance(self.auto_save, bool):
            raise ValidationError("auto_save must be a boolean")
        if not isinstance(self.notifications, bool):
            raise ValidationError("notifications must be a boolean")
        self.default_roast_label = parse_roast_level(self.default_roast_label)

    def merged(self, **updates: Any) -> "Settings":
        known = {f.name for f in fields(self)}
        unknown = sorted(set(updates) - known)
        if unknown:
            raise ValidationError(f"unknown settings: {', '.join(unknown)}")
        return replace(self, **updates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "theme": self.theme,
            "auto_save": self.auto_save,
            "notifications": self.notifications,
            "default_roast_label": self.default_roast_label.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        if not isinstance(data, dict):
            raise ValidationError("settings must be a mapping")
        return cls().merged(**data)


@dataclass(slots=True)
class Identity:
    id: str | None = None
    email: str | None = None
    name: str | None = None
    authenticated: bool = False

    def __post_init__(self):
        if not self.authenticated and (self.id is not None or self.email is not None):
            raise ValidationError("unauthenticated identity must not carry id/email")
        if self.authenticated and not self.id:
            raise ValidationError("authenticated identity requires an id")

    @property
    def owner_id(self) -> str | None:
        return self.id if self.authenticated else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "authenticated": self.authenticated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Identity":
        if not isinstance(data, dict):
            raise ValidationError("identity must be a mapping")
        return cls(
            id=data.get("id"),
            email=data.get("email"),
            name=data.get("name"),
            authenticated=bool(data.get("authenticated", False)),
        )


ANONYMOUS = Identity()


@dataclass(slots=True)
class UserProfile:
    id: str
    email: str
    name: str | None = None
    avatar_ref: str | None = None
    preferences: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "avatar_ref": self.avatar_ref,
            "preferences": dict(self.preferences),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "UserProfile":
        try:
            return cls(
                id=str(row["id"]),
                email=str(row.get("email") or ""),
                name=row.get("name"),
                avatar_ref=row.get("avatar_ref"),
                preferences=dict(row.get("preferences") or {}),
                created_at=parse_iso(row.get("created_at")),
                updated_at=parse_iso(row.get("updated_at")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"malformed user profile: {e}") from e


__all__ = [
    "CaptureResult",
    "RoastEstimate",
    "SessionStatus",
    "DetectionDraft",
    "DetectionRecord",
    "MonitorSnapshot",
    "MonitorSessionDraft",
    "MonitorSession",
    "Settings",
    "Identity",
    "ANONYMOUS",
    "UserProfile",
    "LANGUAGES",
    "THEMES",
]
