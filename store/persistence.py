"""Local JSON snapshot of the persisted slice of state.

Only records, sessions, settings and identity are written; the engine's
current-session binding and its timers never are. The file is overwritten
wholesale on each save.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any

from core.contracts import DetectionRecord, Identity, MonitorSession, Settings
from core.errors import PersistenceError, ValidationError

L = logging.getLogger("roast_monitor.persistence")

_KEYS = ("detectionRecords", "monitorSessions", "settings", "identity")


@dataclass
class PersistedState:
    detection_records: list[DetectionRecord] = field(default_factory=list)
    monitor_sessions: list[MonitorSession] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)
    identity: Identity = field(default_factory=Identity)

    def to_document(self) -> dict[str, Any]:
        return {
            "detectionRecords": [r.to_row() for r in self.detection_records],
            "monitorSessions": [
                s.to_row(with_snapshots=True) for s in self.monitor_sessions
            ],
            "settings": self.settings.to_dict(),
            "identity": self.identity.to_dict(),
        }

    @classmethod
    def from_document(cls, doc: Any) -> "PersistedState":
        if not isinstance(doc, dict):
            raise PersistenceError("state file root must be an object")
        missing = [k for k in _KEYS if k not in doc]
        if missing:
            raise PersistenceError(f"state file missing keys: {', '.join(missing)}")
        records = doc["detectionRecords"]
        sessions = doc["monitorSessions"]
        if not isinstance(records, list) or not isinstance(sessions, list):
            raise PersistenceError("detectionRecords/monitorSessions must be lists")
        try:
            return cls(
                detection_records=[DetectionRecord.from_row(r) for r in records],
                monitor_sessions=[MonitorSession.from_row(s) for s in sessions],
                settings=Settings.from_dict(doc["settings"]),
                identity=Identity.from_dict(doc["identity"]),
            )
        except (ValidationError, TypeError, AttributeError) as e:
            raise PersistenceError(f"state file has malformed entries: {e}") from e


class StateFile:
    def __init__(self, path: str):
        self.path = path
        self._write_lock = asyncio.Lock()

    def restore(self) -> PersistedState:
        """Read the state file; a missing or malformed file yields defaults."""
        if not os.path.exists(self.path):
            L.debug("no state file at %s; starting from defaults", self.path)
            return PersistedState()
        try:
            return self._read()
        except PersistenceError as e:
            L.warning("state file %s ignored: %s", self.path, e)
            return PersistedState()

    def _read(self) -> PersistedState:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"cannot read {self.path}: {e}") from e
        return PersistedState.from_document(doc)

    def write(self, state: PersistedState):
        """Serialize and atomically replace the state file."""
        self._write_document(state.to_document())

    def _write_document(self, doc: dict[str, Any]):
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".state-", suffix=".json", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(doc, f, ensure_ascii=False, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"cannot write {self.path}: {e}") from e

    async def save(self, state: PersistedState) -> bool:
        """Write from a worker thread; failures are logged, never raised."""
        async with self._write_lock:
            try:
                # Serialized on the loop; only file IO moves to the worker thread.
                await asyncio.to_thread(self._write_document, state.to_document())
            except PersistenceError as e:
                L.warning("state save failed: %s", e)
                return False
        return True


__all__ = ["PersistedState", "StateFile"]
