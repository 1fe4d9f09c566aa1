"""Remote gateway contract: record-level CRUD plus identity operations.

Every data call is a single round trip; nothing is cached, retried or batched.
Failures surface as `GatewayError`.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict

from core.contracts import (
    DetectionDraft,
    DetectionRecord,
    Identity,
    MonitorSession,
    MonitorSessionDraft,
    MonitorSnapshot,
    UserProfile,
)
from core.errors import GatewayError, ValidationError
from core.registry import register_named, resolve_registered
from utils.timestamps import to_iso

L = logging.getLogger("roast_monitor.sync")


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


AuthListener = Callable[[AuthEvent, Identity], Any]

SESSION_UPDATABLE = {"name", "status", "end_time", "target_roast_index", "target_roast_label"}


class Gateway(ABC):
    name = "gateway"

    def __init__(self, *, allow_anonymous_writes: bool = True):
        self.allow_anonymous_writes = bool(allow_anonymous_writes)
        self._auth_listeners: list[AuthListener] = []

    # detection_records
    @abstractmethod
    async def insert_detection_record(
        self, draft: DetectionDraft, owner_id: str | None
    ) -> DetectionRecord: ...

    @abstractmethod
    async def list_detection_records(self, owner_id: str | None) -> list[DetectionRecord]:
        """Newest first. `owner_id=None` lists anonymous rows."""

    @abstractmethod
    async def delete_detection_record(self, record_id: str) -> None: ...

    # monitor_sessions
    @abstractmethod
    async def insert_monitor_session(
        self, draft: MonitorSessionDraft, owner_id: str | None
    ) -> MonitorSession: ...

    @abstractmethod
    async def update_monitor_session(
        self, session_id: str, updates: dict[str, Any]
    ) -> MonitorSession: ...

    @abstractmethod
    async def list_monitor_sessions(self, owner_id: str | None) -> list[MonitorSession]: ...

    # monitor_snapshots
    @abstractmethod
    async def insert_monitor_snapshot(self, snapshot: MonitorSnapshot) -> MonitorSnapshot: ...

    @abstractmethod
    async def list_monitor_snapshots(self, session_id: str) -> list[MonitorSnapshot]:
        """Oldest first."""

    # user_profiles
    @abstractmethod
    async def get_user_profile(self, user_id: str) -> UserProfile | None: ...

    @abstractmethod
    async def upsert_user_profile(self, profile: UserProfile) -> UserProfile: ...

    # identity
    @abstractmethod
    async def sign_up(self, email: str, password: str) -> Identity | None:
        """Returns the signed-in identity, or None when confirmation is pending."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Identity: ...

    @abstractmethod
    async def sign_out(self) -> None: ...

    @abstractmethod
    async def get_current_identity(self) -> Identity | None: ...

    async def close(self) -> None:
        return None

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        self._auth_listeners.append(listener)

        def unsubscribe():
            if listener in self._auth_listeners:
                self._auth_listeners.remove(listener)

        return unsubscribe

    async def _emit_auth(self, event: AuthEvent, identity: Identity):
        for listener in list(self._auth_listeners):
            try:
                result = listener(event, identity)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                L.exception("auth listener failed for %s", event.value)

    def _check_owner(self, owner_id: str | None):
        if owner_id is None and not self.allow_anonymous_writes:
            raise GatewayError("anonymous writes are disabled", status=401)


def session_updates_to_row(updates: dict[str, Any]) -> dict[str, Any]:
    """Validate session update keys and convert values to their column form."""
    unknown = sorted(set(updates) - SESSION_UPDATABLE)
    if unknown:
        raise ValidationError(f"cannot update session fields: {', '.join(unknown)}")
    row: dict[str, Any] = {}
    for key, value in updates.items():
        if isinstance(value, datetime):
            value = to_iso(value)
        elif isinstance(value, Enum):
            value = value.value
        row[key] = value
    return row


def parse_rows(rows: Any, parser: Callable[[dict[str, Any]], Any], what: str) -> list:
    if not isinstance(rows, list):
        raise GatewayError(f"expected a list of {what}, got {type(rows).__name__}")
    try:
        return [parser(row) for row in rows]
    except ValidationError as e:
        raise GatewayError(f"backend returned malformed {what}: {e}") from e


def parse_row(row: Any, parser: Callable[[dict[str, Any]], Any], what: str):
    if not isinstance(row, dict):
        raise GatewayError(f"expected a {what} row, got {type(row).__name__}")
    try:
        return parser(row)
    except ValidationError as e:
        raise GatewayError(f"backend returned malformed {what}: {e}") from e


_registry: Dict[str, Callable[..., Gateway]] = {}


def register_gateway(name: str):
    return register_named(_registry, name)


def create_gateway(name: str, **kwargs: Any) -> Gateway:
    factory = resolve_registered(
        _registry,
        name,
        package=__package__ or "sync",
        unknown_label="gateway type",
    )
    return factory(**kwargs)


def create_gateway_from_loaded_config(cfg) -> Gateway:
    block = cfg.gateway
    kwargs: dict[str, Any] = {"allow_anonymous_writes": bool(block.allow_anonymous_writes)}
    if block.type == "supabase":
        kwargs.update(
            url=block.url,
            anon_key=block.anon_key,
            timeout_s=float(block.timeout_s),
            session_path=block.session_path,
        )
    return create_gateway(block.type, **kwargs)


__all__ = [
    "AuthEvent",
    "AuthListener",
    "Gateway",
    "SESSION_UPDATABLE",
    "session_updates_to_row",
    "parse_rows",
    "parse_row",
    "register_gateway",
    "create_gateway",
    "create_gateway_from_loaded_config",
]
