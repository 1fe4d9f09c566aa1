"""Explicit state container for records, sessions, settings and identity.

State is mutated only through the methods below. Mutators that may reach the
gateway emit `Pending` to subscribers before the remote call and the final
`Committed` / `Failed` afterwards; nothing is merged into memory until the
gateway has confirmed it. Every committed mutation schedules a save of the
persisted slice.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from core.contracts import (
    ANONYMOUS,
    DetectionDraft,
    DetectionRecord,
    Identity,
    MonitorSession,
    MonitorSessionDraft,
    MonitorSnapshot,
    RoastEstimate,
    SessionStatus,
    Settings,
    UserProfile,
)
from core.errors import GatewayError, PersistenceError, ValidationError
from core.lifecycle import AsyncTaskOwner
from core.roast import parse_roast_level
from sync.base import SESSION_UPDATABLE, AuthEvent, Gateway
from utils.timestamps import coerce_utc_datetime, to_iso, utc_now

from .persistence import PersistedState, StateFile

L = logging.getLogger("roast_monitor.store")

T = TypeVar("T")

SETTINGS_EXPORT_VERSION = "1.0.0"

# Allowed session status moves; COMPLETED is terminal.
_TRANSITIONS = {
    SessionStatus.ACTIVE: {SessionStatus.PAUSED, SessionStatus.COMPLETED},
    SessionStatus.PAUSED: {SessionStatus.ACTIVE, SessionStatus.COMPLETED},
    SessionStatus.COMPLETED: set(),
}


@dataclass(frozen=True)
class Pending:
    action: str


@dataclass(frozen=True)
class Committed(Generic[T]):
    action: str
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Failed:
    action: str
    error: Exception

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error


MutationResult = Union[Committed[T], Failed]
StoreEvent = Union[Pending, Committed, Failed]
StoreListener = Callable[[StoreEvent], None]


def _local_id() -> str:
    return f"local-{uuid.uuid4()}"


class StateStore:
    def __init__(
        self,
        gateway: Gateway,
        *,
        state_file: StateFile | None = None,
        clock: Callable[[], datetime] | None = None,
        tasks: AsyncTaskOwner | None = None,
    ):
        self.gateway = gateway
        self.state_file = state_file
        self._clock = clock or utc_now
        self.tasks = tasks or AsyncTaskOwner(owner_name="store")
        self.detection_records: list[DetectionRecord] = []
        self.monitor_sessions: list[MonitorSession] = []
        self.settings = Settings()
        self.identity: Identity = ANONYMOUS
        self._listeners: list[StoreListener] = []
        self._unsubscribe_auth: Callable[[], None] | None = None
        self._signout_seq = 0
        self._logout_hooks: list[Callable[[], Awaitable[Any]]] = []

    # subscriptions
    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def before_logout(self, hook: Callable[[], Awaitable[Any]]) -> Callable[[], None]:
        """Register a coroutine function awaited while the user is still signed in."""
        self._logout_hooks.append(hook)

        def remove():
            if hook in self._logout_hooks:
                self._logout_hooks.remove(hook)

        return remove

    def _emit(self, event: StoreEvent):
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                L.exception("store listener failed on %s", event.action)

    # persistence
    def persisted_state(self) -> PersistedState:
        return PersistedState(
            detection_records=list(self.detection_records),
            monitor_sessions=list(self.monitor_sessions),
            settings=self.settings,
            identity=self.identity,
        )

    def _apply_persisted(self, state: PersistedState):
        self.detection_records = list(state.detection_records)
        self.monitor_sessions = list(state.monitor_sessions)
        self.settings = state.settings
        self.identity = state.identity

    def _schedule_save(self):
        if self.state_file is None:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Synchronous caller with no loop (settings edits from the CLI).
            try:
                self.state_file.write(self.persisted_state())
            except PersistenceError as e:
                L.warning("state save failed: %s", e)
            return
        self.tasks.spawn(self.state_file.save(self.persisted_state()))

    async def flush(self):
        """Wait for spawned work, then write the final state."""
        await self.tasks.drain()
        if self.state_file is not None:
            await self.state_file.save(self.persisted_state())

    # helpers
    @property
    def writes_remote(self) -> bool:
        return self.identity.authenticated or self.gateway.allow_anonymous_writes

    async def _mutate(
        self,
        action: str,
        remote: Callable[[], Awaitable[T]],
        apply: Callable[[T], Any],
    ) -> MutationResult:
        self._emit(Pending(action))
        try:
            value = await remote()
        except GatewayError as e:
            L.warning("%s failed: %s", action, e)
            result: MutationResult = Failed(action, e)
        else:
            apply(value)
            result = Committed(action, value)
            self._schedule_save()
        self._emit(result)
        return result

    def _commit_local(self, action: str, value: T) -> Committed[T]:
        result = Committed(action, value)
        self._schedule_save()
        self._emit(result)
        return result

    def find_session(self, session_id: str) -> MonitorSession | None:
        for session in self.monitor_sessions:
            if session.id == session_id:
                return session
        return None

    def _replace_session(self, session: MonitorSession):
        self.monitor_sessions = [
            session if s.id == session.id else s for s in self.monitor_sessions
        ]

    # detection records
    async def add_detection_record(
        self, draft: DetectionDraft | dict[str, Any]
    ) -> MutationResult:
        if not isinstance(draft, DetectionDraft):
            try:
                draft = DetectionDraft(**dict(draft))
            except TypeError as e:
                raise ValidationError(f"invalid detection record: {e}") from e
        owner_id = self.identity.owner_id

        def apply(record: DetectionRecord):
            self.detection_records = [record, *self.detection_records]

        if not self.writes_remote:
            record = DetectionRecord(
                id=_local_id(),
                image_ref=draft.image_ref,
                roast_index=draft.roast_index,
                roast_label=draft.roast_label,
                confidence=draft.confidence,
                advisory=draft.advisory,
                created_at=coerce_utc_datetime(self._clock()),
            )
            apply(record)
            return self._commit_local("add_detection_record", record)
        return await self._mutate(
            "add_detection_record",
            lambda: self.gateway.insert_detection_record(draft, owner_id),
            apply,
        )

    async def remove_detection_record(self, record_id: str) -> MutationResult:
        def apply(_):
            self.detection_records = [
                r for r in self.detection_records if r.id != record_id
            ]

        if not self.writes_remote:
            apply(None)
            return self._commit_local("remove_detection_record", record_id)

        async def remote():
            await self.gateway.delete_detection_record(record_id)
            return record_id

        return await self._mutate("remove_detection_record", remote, apply)

    def clear_detection_records(self) -> Committed[int]:
        """Local only: the remote rows are left in place."""
        count = len(self.detection_records)
        self.detection_records = []
        return self._commit_local("clear_detection_records", count)

    async def load_detection_records(self) -> MutationResult:
        if not self.writes_remote:
            return Committed("load_detection_records", list(self.detection_records))
        owner_id = self.identity.owner_id

        def apply(records: list[DetectionRecord]):
            self.detection_records = list(records)

        return await self._mutate(
            "load_detection_records",
            lambda: self.gateway.list_detection_records(owner_id),
            apply,
        )

    # monitor sessions
    async def add_monitor_session(self, draft: MonitorSessionDraft) -> MutationResult:
        owner_id = self.identity.owner_id

        def apply(session: MonitorSession):
            self.monitor_sessions = [session, *self.monitor_sessions]

        if not self.writes_remote:
            session = MonitorSession(
                id=_local_id(),
                name=draft.name,
                target_roast_index=draft.target_roast_index,
                target_roast_label=draft.target_roast_label,
                start_time=draft.start_time,
                status=draft.status,
                created_at=coerce_utc_datetime(self._clock()),
            )
            apply(session)
            return self._commit_local("add_monitor_session", session)
        return await self._mutate(
            "add_monitor_session",
            lambda: self.gateway.insert_monitor_session(draft, owner_id),
            apply,
        )

    def _normalize_session_updates(
        self, session_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        unknown = sorted(set(updates) - SESSION_UPDATABLE)
        if unknown:
            raise ValidationError(f"cannot update session fields: {', '.join(unknown)}")
        out = dict(updates)
        if "status" in out:
            try:
                out["status"] = SessionStatus(out["status"])
            except ValueError as e:
                raise ValidationError(f"unknown session status {out['status']!r}") from e
            current = self.find_session(session_id)
            if current is not None and out["status"] != current.status:
                if out["status"] not in _TRANSITIONS[current.status]:
                    raise ValidationError(
                        f"session {session_id} cannot move from "
                        f"{current.status.value} to {out['status'].value}"
                    )
        if "target_roast_label" in out:
            out["target_roast_label"] = parse_roast_level(out["target_roast_label"])
        if "name" in out:
            out["name"] = str(out["name"] or "").strip()
            if not out["name"]:
                raise ValidationError("session name must not be empty")
        if out.get("end_time") is not None:
            out["end_time"] = coerce_utc_datetime(out["end_time"])
        return out

    async def update_monitor_session(self, session_id: str, **updates: Any) -> MutationResult:
        changes = self._normalize_session_updates(session_id, updates)

        def apply(session: MonitorSession):
            local = self.find_session(session.id)
            if local is None:
                self.monitor_sessions = [session, *self.monitor_sessions]
                return
            if session.status != local.status and session.status not in _TRANSITIONS[local.status]:
                # A reply that lost a race with a later update (e.g. paused after completed).
                L.warning(
                    "ignoring stale update for session %s: %s -> %s",
                    session.id,
                    local.status.value,
                    session.status.value,
                )
                return
            # The backend row carries no snapshots; keep the local ones.
            self._replace_session(replace(session, snapshots=local.snapshots))

        if not self.writes_remote:
            local = self.find_session(session_id)
            if local is None:
                raise ValidationError(f"unknown monitor session {session_id}")
            updated = replace(local, **changes)
            apply(updated)
            return self._commit_local("update_monitor_session", updated)
        return await self._mutate(
            "update_monitor_session",
            lambda: self.gateway.update_monitor_session(session_id, changes),
            apply,
        )

    async def load_monitor_sessions(self) -> MutationResult:
        if not self.writes_remote:
            return Committed("load_monitor_sessions", list(self.monitor_sessions))
        owner_id = self.identity.owner_id

        def apply(sessions: list[MonitorSession]):
            known = {s.id: s.snapshots for s in self.monitor_sessions}
            self.monitor_sessions = [
                replace(s, snapshots=known.get(s.id, s.snapshots)) for s in sessions
            ]

        return await self._mutate(
            "load_monitor_sessions",
            lambda: self.gateway.list_monitor_sessions(owner_id),
            apply,
        )

    # snapshots
    def record_snapshot(
        self, session_id: str, sample: RoastEstimate, timestamp: datetime
    ) -> MonitorSnapshot:
        """Append a sample to the in-memory session under a provisional id."""
        session = self.find_session(session_id)
        if session is None:
            raise ValidationError(f"unknown monitor session {session_id}")
        ts = coerce_utc_datetime(timestamp)
        if session.snapshots and ts <= session.snapshots[-1].timestamp:
            raise ValidationError(
                f"snapshot timestamp {to_iso(ts)} does not follow "
                f"{to_iso(session.snapshots[-1].timestamp)}"
            )
        snapshot = MonitorSnapshot(
            id=_local_id(),
            session_id=session_id,
            roast_index=float(sample.roast_index),
            roast_label=parse_roast_level(sample.roast_label),
            confidence=float(sample.confidence),
            temperature=sample.temperature,
            timestamp=ts,
        )
        session.snapshots.append(snapshot)
        self._commit_local("record_snapshot", snapshot)
        return snapshot

    async def persist_snapshot(self, snapshot: MonitorSnapshot) -> MutationResult:
        if not self.writes_remote:
            return Committed("persist_snapshot", snapshot)
        provisional_id = snapshot.id

        def apply(saved: MonitorSnapshot):
            session = self.find_session(saved.session_id)
            if session is None:
                return
            for i, snap in enumerate(session.snapshots):
                if snap.id == provisional_id:
                    session.snapshots[i] = replace(snap, id=saved.id)
                    break

        return await self._mutate(
            "persist_snapshot",
            lambda: self.gateway.insert_monitor_snapshot(snapshot),
            apply,
        )

    async def load_session_snapshots(self, session_id: str) -> MutationResult:
        if self.find_session(session_id) is None:
            raise ValidationError(f"unknown monitor session {session_id}")
        if not self.writes_remote:
            session = self.find_session(session_id)
            return Committed("load_session_snapshots", list(session.snapshots))

        def apply(snapshots: list[MonitorSnapshot]):
            session = self.find_session(session_id)
            if session is not None:
                self._replace_session(replace(session, snapshots=list(snapshots)))

        return await self._mutate(
            "load_session_snapshots",
            lambda: self.gateway.list_monitor_snapshots(session_id),
            apply,
        )

    # settings
    def update_settings(self, **partial: Any) -> Committed[Settings]:
        self.settings = self.settings.merged(**partial)
        return self._commit_local("update_settings", self.settings)

    def reset_settings(self) -> Committed[Settings]:
        self.settings = Settings()
        return self._commit_local("reset_settings", self.settings)

    def export_settings(self, path: str) -> str:
        doc = {
            "settings": self.settings.to_dict(),
            "exportDate": to_iso(self._clock()),
            "version": SETTINGS_EXPORT_VERSION,
        }
        try:
            parent = os.path.dirname(os.path.abspath(path))
            os.makedirs(parent, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(doc, f, ensure_ascii=False, indent=2)
        except OSError as e:
            raise PersistenceError(f"cannot export settings to {path}: {e}") from e
        return path

    def import_settings(self, path: str) -> Committed[Settings]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except OSError as e:
            raise PersistenceError(f"cannot read settings from {path}: {e}") from e
        except ValueError as e:
            raise ValidationError(f"settings file {path} is not valid JSON") from e
        if not isinstance(doc, dict) or not isinstance(doc.get("settings"), dict):
            raise ValidationError(f"settings file {path} has no settings object")
        self.settings = Settings.from_dict(doc["settings"])
        return self._commit_local("import_settings", self.settings)

    # identity
    def set_identity(self, identity: Identity) -> Committed[Identity]:
        self.identity = identity
        return self._commit_local("set_identity", identity)

    def _apply_signed_out(self, *, notify: bool = False):
        if not self.identity.authenticated and not notify:
            return
        self._signout_seq += 1
        self.identity = ANONYMOUS
        self._commit_local("logout", ANONYMOUS)

    async def logout(self) -> Committed[Identity]:
        """Sign out remotely (failure logged) and reset identity; history is kept."""
        seq = self._signout_seq
        for hook in list(self._logout_hooks):
            try:
                await hook()
            except Exception:
                L.exception("pre-logout hook failed")
        try:
            await self.gateway.sign_out()
        except GatewayError as e:
            L.warning("remote sign-out failed: %s", e)
        if self._signout_seq == seq:
            self._apply_signed_out(notify=True)
        return Committed("logout", self.identity)

    async def _on_auth_change(self, event: AuthEvent, identity: Identity):
        if event == AuthEvent.SIGNED_OUT:
            self._apply_signed_out()
        elif event == AuthEvent.SIGNED_IN and identity != self.identity:
            self.set_identity(identity)

    async def _reload(self):
        for result in (
            await self.load_detection_records(),
            await self.load_monitor_sessions(),
        ):
            if isinstance(result, Failed):
                L.warning("reload %s failed: %s", result.action, result.error)

    async def sign_in(self, email: str, password: str) -> MutationResult:
        result = await self._mutate(
            "sign_in",
            lambda: self.gateway.sign_in(email, password),
            self._set_identity_quiet,
        )
        if result.ok:
            await self._reload()
        return result

    async def sign_up(self, email: str, password: str) -> MutationResult:
        result = await self._mutate(
            "sign_up",
            lambda: self.gateway.sign_up(email, password),
            self._set_identity_quiet,
        )
        if result.ok and result.value is not None:
            await self._reload()
        return result

    def _set_identity_quiet(self, identity: Identity | None):
        if identity is not None:
            self.identity = identity

    async def initialize(self):
        """Restore local state, follow auth changes and resolve the live identity."""
        if self.state_file is not None:
            self._apply_persisted(self.state_file.restore())
        if self._unsubscribe_auth is None:
            self._unsubscribe_auth = self.gateway.on_auth_state_change(
                self._on_auth_change
            )
        try:
            current = await self.gateway.get_current_identity()
        except GatewayError as e:
            L.warning("could not resolve identity, keeping %s: %s", self.identity.email, e)
            return
        if current is None:
            if self.identity.authenticated:
                L.info("stored sign-in for %s has expired", self.identity.email)
                self.set_identity(ANONYMOUS)
            return
        self.identity = current
        await self._reload()

    def close(self):
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None

    # profile
    def _require_signed_in(self) -> Identity:
        if not self.identity.authenticated:
            raise ValidationError("sign in first")
        return self.identity

    async def load_profile(self) -> MutationResult:
        identity = self._require_signed_in()

        def apply(profile: UserProfile | None):
            if profile is None:
                return
            known = {k: v for k, v in profile.preferences.items() if k in Settings().to_dict()}
            try:
                self.settings = self.settings.merged(**known)
            except ValidationError as e:
                L.warning("ignoring stored preferences for %s: %s", identity.email, e)

        return await self._mutate(
            "load_profile", lambda: self.gateway.get_user_profile(identity.id), apply
        )

    async def push_profile(self) -> MutationResult:
        identity = self._require_signed_in()
        profile = UserProfile(
            id=identity.id,
            email=identity.email or "",
            name=identity.name,
            preferences=self.settings.to_dict(),
        )
        return await self._mutate(
            "push_profile",
            lambda: self.gateway.upsert_user_profile(profile),
            lambda _: None,
        )


__all__ = [
    "Pending",
    "Committed",
    "Failed",
    "MutationResult",
    "StoreEvent",
    "StoreListener",
    "StateStore",
    "SETTINGS_EXPORT_VERSION",
]
