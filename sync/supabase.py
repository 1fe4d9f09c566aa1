"""Supabase backend over aiohttp: PostgREST for tables, GoTrue for identity."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any

import aiohttp

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

from .base import (
    AuthEvent,
    Gateway,
    parse_row,
    parse_rows,
    register_gateway,
    session_updates_to_row,
)

L = logging.getLogger("roast_monitor.sync.supabase")


def _identity_from_user(user: dict[str, Any]) -> Identity:
    meta = user.get("user_metadata") or {}
    email = user.get("email") or ""
    return Identity(
        id=str(user["id"]),
        email=email,
        name=meta.get("name") or email,
        authenticated=True,
    )


def _error_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "msg", "error_description", "error"):
            if payload.get(key):
                return str(payload[key])
    return fallback


@register_gateway("supabase")
class SupabaseGateway(Gateway):
    name = "supabase"

    def __init__(
        self,
        *,
        url: str,
        anon_key: str,
        timeout_s: float = 10.0,
        allow_anonymous_writes: bool = True,
        session_path: str = "",
        http: aiohttp.ClientSession | None = None,
    ):
        super().__init__(allow_anonymous_writes=allow_anonymous_writes)
        self._base = str(url).rstrip("/")
        self._anon_key = anon_key
        self._timeout = aiohttp.ClientTimeout(total=float(timeout_s))
        self._session_path = session_path
        self._http = http
        self._owns_http = http is None
        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._load_auth_session()

    # auth session file: keeps the sign-in alive across CLI invocations
    def _load_auth_session(self):
        if not self._session_path or not os.path.exists(self._session_path):
            return
        try:
            with open(self._session_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._access_token = data.get("access_token") or None
            self._refresh_token = data.get("refresh_token") or None
        except (OSError, ValueError, AttributeError) as e:
            L.warning("ignoring unreadable auth session %s: %s", self._session_path, e)

    def _save_auth_session(self):
        if not self._session_path:
            return
        try:
            if self._access_token is None:
                if os.path.exists(self._session_path):
                    os.remove(self._session_path)
                return
            os.makedirs(os.path.dirname(os.path.abspath(self._session_path)), exist_ok=True)
            with open(self._session_path, "w", encoding="utf-8") as f:
                json.dump(
                    {
                        "access_token": self._access_token,
                        "refresh_token": self._refresh_token,
                    },
                    f,
                )
        except OSError as e:
            L.warning("could not write auth session %s: %s", self._session_path, e)

    def _set_tokens(self, payload: dict[str, Any]):
        self._access_token = payload.get("access_token")
        self._refresh_token = payload.get("refresh_token")
        self._save_auth_session()

    def _clear_tokens(self):
        self._access_token = None
        self._refresh_token = None
        self._save_auth_session()

    async def _client(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_http = True
        return self._http

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._access_token or self._anon_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        payload: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        http = await self._client()
        url = f"{self._base}{path}"
        try:
            async with http.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(headers),
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                body: Any = None
                if text:
                    try:
                        body = json.loads(text)
                    except ValueError:
                        body = text
                if resp.status >= 400:
                    raise GatewayError(
                        _error_message(body, f"{method} {path} failed"),
                        status=resp.status,
                        code=str(body.get("code", "")) if isinstance(body, dict) else "",
                    )
                return body
        except aiohttp.ClientError as e:
            raise GatewayError(f"{method} {path}: {e}") from e
        except asyncio.TimeoutError as e:
            raise GatewayError(f"{method} {path}: timed out") from e

    async def _rest(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        payload: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        return await self._request(
            method, f"/rest/v1/{table}", params=params, payload=payload, headers=headers
        )

    async def _insert_one(self, table: str, row: dict[str, Any]) -> Any:
        rows = await self._rest("POST", table, payload=row, prefer="return=representation")
        if not isinstance(rows, list) or len(rows) != 1:
            raise GatewayError(f"insert into {table} returned no row")
        return rows[0]

    @staticmethod
    def _owner_filter(owner_id: str | None) -> str:
        return "is.null" if owner_id is None else f"eq.{owner_id}"

    async def insert_detection_record(self, draft: DetectionDraft, owner_id):
        self._check_owner(owner_id)
        row = await self._insert_one("detection_records", draft.to_row(owner_id))
        return parse_row(row, DetectionRecord.from_row, "detection record")

    async def list_detection_records(self, owner_id):
        rows = await self._rest(
            "GET",
            "detection_records",
            params={
                "select": "*",
                "owner_id": self._owner_filter(owner_id),
                "order": "created_at.desc",
            },
        )
        return parse_rows(rows, DetectionRecord.from_row, "detection records")

    async def delete_detection_record(self, record_id):
        await self._rest("DELETE", "detection_records", params={"id": f"eq.{record_id}"})

    async def insert_monitor_session(self, draft: MonitorSessionDraft, owner_id):
        self._check_owner(owner_id)
        row = await self._insert_one("monitor_sessions", draft.to_row(owner_id))
        return parse_row(row, MonitorSession.from_row, "monitor session")

    async def update_monitor_session(self, session_id, updates):
        rows = await self._rest(
            "PATCH",
            "monitor_sessions",
            params={"id": f"eq.{session_id}"},
            payload=session_updates_to_row(updates),
            prefer="return=representation",
        )
        if not isinstance(rows, list) or not rows:
            raise GatewayError(f"monitor session {session_id} not found", status=404)
        return parse_row(rows[0], MonitorSession.from_row, "monitor session")

    async def list_monitor_sessions(self, owner_id):
        rows = await self._rest(
            "GET",
            "monitor_sessions",
            params={
                "select": "*",
                "owner_id": self._owner_filter(owner_id),
                "order": "created_at.desc",
            },
        )
        return parse_rows(rows, MonitorSession.from_row, "monitor sessions")

    async def insert_monitor_snapshot(self, snapshot: MonitorSnapshot):
        row = await self._insert_one(
            "monitor_snapshots", snapshot.to_row(include_id=False)
        )
        return parse_row(row, MonitorSnapshot.from_row, "monitor snapshot")

    async def list_monitor_snapshots(self, session_id):
        rows = await self._rest(
            "GET",
            "monitor_snapshots",
            params={
                "select": "*",
                "session_id": f"eq.{session_id}",
                "order": "timestamp.asc",
            },
        )
        return parse_rows(rows, MonitorSnapshot.from_row, "monitor snapshots")

    async def get_user_profile(self, user_id):
        rows = await self._rest(
            "GET", "user_profiles", params={"select": "*", "id": f"eq.{user_id}"}
        )
        if not isinstance(rows, list) or not rows:
            return None
        return parse_row(rows[0], UserProfile.from_row, "user profile")

    async def upsert_user_profile(self, profile: UserProfile):
        row = await self._insert_one_upsert("user_profiles", profile.to_row())
        return parse_row(row, UserProfile.from_row, "user profile")

    async def _insert_one_upsert(self, table: str, row: dict[str, Any]) -> Any:
        rows = await self._rest(
            "POST",
            table,
            payload=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not isinstance(rows, list) or len(rows) != 1:
            raise GatewayError(f"upsert into {table} returned no row")
        return rows[0]

    async def sign_up(self, email, password):
        body = await self._request(
            "POST", "/auth/v1/signup", payload={"email": email, "password": password}
        )
        if not isinstance(body, dict):
            raise GatewayError("unexpected sign-up response")
        if not body.get("access_token"):
            # Email confirmation pending; no session yet.
            return None
        self._set_tokens(body)
        identity = _identity_from_user(body.get("user") or {})
        await self._emit_auth(AuthEvent.SIGNED_IN, identity)
        return identity

    async def sign_in(self, email, password):
        body = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            payload={"email": email, "password": password},
        )
        if not isinstance(body, dict) or not body.get("access_token"):
            raise GatewayError("sign-in returned no session")
        self._set_tokens(body)
        identity = _identity_from_user(body.get("user") or {})
        await self._emit_auth(AuthEvent.SIGNED_IN, identity)
        return identity

    async def sign_out(self):
        if self._access_token is None:
            return
        try:
            await self._request("POST", "/auth/v1/logout")
        finally:
            self._clear_tokens()
            await self._emit_auth(AuthEvent.SIGNED_OUT, Identity())

    async def _refresh(self) -> bool:
        if not self._refresh_token:
            return False
        try:
            body = await self._request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                payload={"refresh_token": self._refresh_token},
            )
        except GatewayError as e:
            L.info("session refresh failed: %s", e)
            return False
        if not isinstance(body, dict) or not body.get("access_token"):
            return False
        self._set_tokens(body)
        return True

    async def get_current_identity(self):
        if self._access_token is None:
            return None
        try:
            user = await self._request("GET", "/auth/v1/user")
        except GatewayError as e:
            if e.status not in (401, 403):
                raise
            if not await self._refresh():
                self._clear_tokens()
                return None
            user = await self._request("GET", "/auth/v1/user")
        if not isinstance(user, dict) or "id" not in user:
            raise GatewayError("unexpected user response")
        return _identity_from_user(user)

    async def close(self):
        if self._http is not None and self._owns_http and not self._http.closed:
            await self._http.close()
        self._http = None


__all__ = ["SupabaseGateway"]
