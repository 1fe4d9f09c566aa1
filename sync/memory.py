"""In-process backend with the same table layout as the remote schema.

Used for guest/offline runs and as the backend in tests. Rows are kept as
plain dicts and parsed back through the contracts, so it exercises the same
serialization path as the HTTP gateway.
"""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from core.contracts import (
    DetectionDraft,
    DetectionRecord,
    Identity,
    MonitorSession,
    MonitorSessionDraft,
    MonitorSnapshot,
    UserProfile,
)
from core.errors import GatewayError
from utils.timestamps import to_iso, utc_now

from .base import (
    AuthEvent,
    Gateway,
    parse_row,
    parse_rows,
    register_gateway,
    session_updates_to_row,
)

L = logging.getLogger("roast_monitor.sync.memory")

TABLES = ("detection_records", "monitor_sessions", "monitor_snapshots", "user_profiles")


@register_gateway("memory")
class MemoryGateway(Gateway):
    name = "memory"

    def __init__(
        self,
        *,
        allow_anonymous_writes: bool = True,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(allow_anonymous_writes=allow_anonymous_writes)
        self._clock = clock or utc_now
        self.tables: dict[str, list[dict[str, Any]]] = {name: [] for name in TABLES}
        self._users: dict[str, dict[str, Any]] = {}
        self._current: Identity | None = None
        self.calls: list[str] = []

    def _record(self, op: str):
        self.calls.append(op)

    def _now_iso(self) -> str:
        return to_iso(self._clock())

    def _insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stored = {"id": str(uuid.uuid4()), **row}
        self.tables[table].append(stored)
        return copy.deepcopy(stored)

    def _find(self, table: str, row_id: str) -> dict[str, Any] | None:
        for row in self.tables[table]:
            if row["id"] == row_id:
                return row
        return None

    @staticmethod
    def _owned(rows: list[dict[str, Any]], owner_id: str | None) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in rows if r.get("owner_id") == owner_id]

    async def insert_detection_record(self, draft: DetectionDraft, owner_id):
        self._record("insert_detection_record")
        self._check_owner(owner_id)
        row = self._insert(
            "detection_records", {**draft.to_row(owner_id), "created_at": self._now_iso()}
        )
        return parse_row(row, DetectionRecord.from_row, "detection record")

    async def list_detection_records(self, owner_id):
        self._record("list_detection_records")
        rows = self._owned(self.tables["detection_records"], owner_id)
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return parse_rows(rows, DetectionRecord.from_row, "detection records")

    async def delete_detection_record(self, record_id):
        self._record("delete_detection_record")
        table = self.tables["detection_records"]
        self.tables["detection_records"] = [r for r in table if r["id"] != record_id]

    async def insert_monitor_session(self, draft: MonitorSessionDraft, owner_id):
        self._record("insert_monitor_session")
        self._check_owner(owner_id)
        row = self._insert(
            "monitor_sessions", {**draft.to_row(owner_id), "created_at": self._now_iso()}
        )
        return parse_row(row, MonitorSession.from_row, "monitor session")

    async def update_monitor_session(self, session_id, updates):
        self._record("update_monitor_session")
        changes = session_updates_to_row(updates)
        row = self._find("monitor_sessions", session_id)
        if row is None:
            raise GatewayError(f"monitor session {session_id} not found", status=404)
        row.update(changes)
        return parse_row(copy.deepcopy(row), MonitorSession.from_row, "monitor session")

    async def list_monitor_sessions(self, owner_id):
        self._record("list_monitor_sessions")
        rows = self._owned(self.tables["monitor_sessions"], owner_id)
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return parse_rows(rows, MonitorSession.from_row, "monitor sessions")

    async def insert_monitor_snapshot(self, snapshot: MonitorSnapshot):
        self._record("insert_monitor_snapshot")
        if self._find("monitor_sessions", snapshot.session_id) is None:
            # Foreign key violation, as the remote backend would report it.
            raise GatewayError(
                f"monitor session {snapshot.session_id} not found", status=409
            )
        row = self._insert("monitor_snapshots", snapshot.to_row(include_id=False))
        return parse_row(row, MonitorSnapshot.from_row, "monitor snapshot")

    async def list_monitor_snapshots(self, session_id):
        self._record("list_monitor_snapshots")
        rows = [
            copy.deepcopy(r)
            for r in self.tables["monitor_snapshots"]
            if r["session_id"] == session_id
        ]
        rows.sort(key=lambda r: r["timestamp"])
        return parse_rows(rows, MonitorSnapshot.from_row, "monitor snapshots")

    async def get_user_profile(self, user_id):
        self._record("get_user_profile")
        row = self._find("user_profiles", user_id)
        if row is None:
            return None
        return parse_row(copy.deepcopy(row), UserProfile.from_row, "user profile")

    async def upsert_user_profile(self, profile: UserProfile):
        self._record("upsert_user_profile")
        now = self._now_iso()
        row = self._find("user_profiles", profile.id)
        if row is None:
            row = {**profile.to_row(), "created_at": now, "updated_at": now}
            self.tables["user_profiles"].append(row)
        else:
            row.update({**profile.to_row(), "updated_at": now})
        return parse_row(copy.deepcopy(row), UserProfile.from_row, "user profile")

    async def sign_up(self, email, password):
        self._record("sign_up")
        key = str(email or "").strip().lower()
        if not key or not password:
            raise GatewayError("email and password are required", status=400)
        if key in self._users:
            raise GatewayError("user already registered", status=422)
        self._users[key] = {"id": str(uuid.uuid4()), "password": password, "email": key}
        return await self._start_session(key)

    async def sign_in(self, email, password):
        self._record("sign_in")
        key = str(email or "").strip().lower()
        user = self._users.get(key)
        if user is None or user["password"] != password:
            raise GatewayError("invalid login credentials", status=400)
        return await self._start_session(key)

    async def _start_session(self, key: str) -> Identity:
        user = self._users[key]
        identity = Identity(
            id=user["id"], email=user["email"], name=user["email"], authenticated=True
        )
        self._current = identity
        await self._emit_auth(AuthEvent.SIGNED_IN, identity)
        return identity

    async def sign_out(self):
        self._record("sign_out")
        was_signed_in = self._current is not None
        self._current = None
        if was_signed_in:
            await self._emit_auth(AuthEvent.SIGNED_OUT, Identity())

    async def get_current_identity(self):
        self._record("get_current_identity")
        return self._current


__all__ = ["MemoryGateway", "TABLES"]
