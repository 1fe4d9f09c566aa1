import os
import tempfile
import unittest
import uuid
from datetime import datetime, timezone

from aiohttp import web
from aiohttp.test_utils import TestServer

from core.contracts import DetectionDraft, MonitorSessionDraft, SessionStatus, UserProfile
from core.errors import GatewayError
from sync import AuthEvent
from sync.supabase import SupabaseGateway

ANON_KEY = "anon-key"
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeSupabase:
    """PostgREST/GoTrue stand-in with just enough filtering for the gateway."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.users: dict[str, dict] = {}
        self.tokens: dict[str, str] = {}
        self.refresh: dict[str, str] = {}
        self.requests: list[tuple[str, str, dict]] = []
        self._seq = 0

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self._track])
        app.router.add_post("/auth/v1/signup", self.signup)
        app.router.add_post("/auth/v1/token", self.token)
        app.router.add_post("/auth/v1/logout", self.logout)
        app.router.add_get("/auth/v1/user", self.user)
        app.router.add_route("*", "/rest/v1/{table}", self.rest)
        return app

    @web.middleware
    async def _track(self, request, handler):
        self.requests.append((request.method, request.path, dict(request.headers)))
        if request.headers.get("apikey") != ANON_KEY:
            return web.json_response({"message": "no api key"}, status=401)
        return await handler(request)

    def _issue(self, user: dict) -> dict:
        access = f"at-{uuid.uuid4()}"
        refresh = f"rt-{uuid.uuid4()}"
        self.tokens[access] = user["id"]
        self.refresh[refresh] = user["id"]
        return {
            "access_token": access,
            "refresh_token": refresh,
            "user": {"id": user["id"], "email": user["email"], "user_metadata": {}},
        }

    def _bearer_user(self, request) -> dict | None:
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        user_id = self.tokens.get(token)
        for user in self.users.values():
            if user["id"] == user_id:
                return user
        return None

    async def signup(self, request):
        body = await request.json()
        if body["email"] in self.users:
            return web.json_response({"msg": "User already registered"}, status=422)
        user = {"id": str(uuid.uuid4()), "email": body["email"], "password": body["password"]}
        self.users[body["email"]] = user
        return web.json_response(self._issue(user))

    async def token(self, request):
        body = await request.json()
        grant = request.query.get("grant_type")
        if grant == "password":
            user = self.users.get(body.get("email"))
            if user is None or user["password"] != body.get("password"):
                return web.json_response(
                    {"error_description": "Invalid login credentials"}, status=400
                )
            return web.json_response(self._issue(user))
        if grant == "refresh_token":
            user_id = self.refresh.pop(body.get("refresh_token"), None)
            for user in self.users.values():
                if user["id"] == user_id:
                    return web.json_response(self._issue(user))
            return web.json_response({"error_description": "Invalid Refresh Token"}, status=400)
        return web.json_response({"msg": "unsupported grant"}, status=400)

    async def logout(self, request):
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        self.tokens.pop(token, None)
        return web.Response(status=204)

    async def user(self, request):
        user = self._bearer_user(request)
        if user is None:
            return web.json_response({"msg": "invalid JWT"}, status=401)
        return web.json_response({"id": user["id"], "email": user["email"]})

    def _matches(self, row: dict, query) -> bool:
        for key, cond in query.items():
            if key in ("select", "order"):
                continue
            if cond == "is.null":
                if row.get(key) is not None:
                    return False
            elif cond.startswith("eq."):
                if str(row.get(key)) != cond[3:]:
                    return False
        return True

    async def rest(self, request):
        table = self.tables.setdefault(request.match_info["table"], [])
        query = request.query
        if request.method == "POST":
            row = await request.json()
            prefer = request.headers.get("Prefer", "")
            if "resolution=merge-duplicates" in prefer:
                for existing in table:
                    if existing["id"] == row["id"]:
                        existing.update(row)
                        return web.json_response([existing], status=201)
            self._seq += 1
            stored = {
                "id": row.get("id") or str(uuid.uuid4()),
                "created_at": f"2024-01-01T00:00:{self._seq:02d}+00:00",
                **row,
            }
            table.append(stored)
            return web.json_response([stored], status=201)
        rows = [r for r in table if self._matches(r, query)]
        if request.method == "GET":
            order = query.get("order", "")
            if order:
                col, _, direction = order.partition(".")
                rows.sort(key=lambda r: r[col], reverse=direction == "desc")
            return web.json_response(rows)
        if request.method == "PATCH":
            patch = await request.json()
            for r in rows:
                r.update(patch)
            return web.json_response(rows)
        if request.method == "DELETE":
            self.tables[request.match_info["table"]] = [r for r in table if r not in rows]
            return web.Response(status=204)
        return web.Response(status=405)


class TestSupabaseGateway(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fake = FakeSupabase()
        self.server = TestServer(self.fake.app())
        await self.server.start_server()
        self.url = str(self.server.make_url("/"))
        self.tmp = tempfile.TemporaryDirectory()
        self.session_path = os.path.join(self.tmp.name, "auth.json")
        self.gw = self._gateway()

    async def asyncTearDown(self):
        await self.gw.close()
        await self.server.close()
        self.tmp.cleanup()

    def _gateway(self, **kwargs) -> SupabaseGateway:
        return SupabaseGateway(
            url=self.url,
            anon_key=ANON_KEY,
            timeout_s=5.0,
            session_path=self.session_path,
            **kwargs,
        )

    async def test_anonymous_record_round_trip(self):
        draft = DetectionDraft("beans.jpg", 66, "中烘", 0.91, "advice")
        saved = await self.gw.insert_detection_record(draft, None)
        self.assertTrue(saved.id)
        self.assertIsNone(saved.owner_id)

        listed = await self.gw.list_detection_records(None)
        self.assertEqual(listed, [saved])

        method, path, headers = self.fake.requests[0]
        self.assertEqual((method, path), ("POST", "/rest/v1/detection_records"))
        self.assertEqual(headers["Authorization"], f"Bearer {ANON_KEY}")
        self.assertIn("return=representation", headers["Prefer"])

        await self.gw.delete_detection_record(saved.id)
        self.assertEqual(await self.gw.list_detection_records(None), [])

    async def test_signed_in_requests_carry_user_token(self):
        events = []
        self.gw.on_auth_state_change(lambda ev, ident: events.append(ev))
        user = await self.gw.sign_up("roaster@example.com", "pw")
        self.assertTrue(user.authenticated)

        await self.gw.insert_detection_record(DetectionDraft("x", 45, "深烘", 0.8), user.id)
        await self.gw.insert_detection_record(DetectionDraft("y", 45, "深烘", 0.8), None)
        mine = await self.gw.list_detection_records(user.id)
        self.assertEqual([r.image_ref for r in mine], ["x"])

        _method, _path, headers = self.fake.requests[-1]
        self.assertNotEqual(headers["Authorization"], f"Bearer {ANON_KEY}")

        await self.gw.sign_out()
        self.assertIsNone(await self.gw.get_current_identity())
        self.assertEqual(events, [AuthEvent.SIGNED_IN, AuthEvent.SIGNED_OUT])

    async def test_backend_rejection_becomes_gateway_error(self):
        with self.assertRaises(GatewayError) as cm:
            await self.gw.sign_in("nobody@example.com", "pw")
        self.assertEqual(cm.exception.status, 400)
        self.assertIn("Invalid login credentials", str(cm.exception))

    async def test_unreachable_backend_becomes_gateway_error(self):
        gw = SupabaseGateway(url="http://127.0.0.1:1", anon_key=ANON_KEY, timeout_s=2.0)
        try:
            with self.assertRaises(GatewayError):
                await gw.list_detection_records(None)
        finally:
            await gw.close()

    async def test_session_update_and_missing_session(self):
        session = await self.gw.insert_monitor_session(
            MonitorSessionDraft("Test Roast", 65, "中烘", T0), None
        )
        updated = await self.gw.update_monitor_session(
            session.id, {"status": SessionStatus.PAUSED}
        )
        self.assertEqual(updated.status, SessionStatus.PAUSED)
        self.assertEqual(len(await self.gw.list_monitor_sessions(None)), 1)
        with self.assertRaises(GatewayError) as cm:
            await self.gw.update_monitor_session("missing", {"status": "completed"})
        self.assertEqual(cm.exception.status, 404)

    async def test_sign_in_survives_restart_and_refreshes(self):
        await self.gw.sign_up("roaster@example.com", "pw")
        self.assertTrue(os.path.exists(self.session_path))

        restarted = self._gateway()
        try:
            identity = await restarted.get_current_identity()
            self.assertEqual(identity.email, "roaster@example.com")

            # Expire the access token; the refresh token still works.
            self.fake.tokens.clear()
            identity = await restarted.get_current_identity()
            self.assertEqual(identity.email, "roaster@example.com")

            self.fake.tokens.clear()
            self.fake.refresh.clear()
            self.assertIsNone(await restarted.get_current_identity())
            self.assertFalse(os.path.exists(self.session_path))
        finally:
            await restarted.close()

    async def test_profile_upsert_merges(self):
        user = await self.gw.sign_up("roaster@example.com", "pw")
        await self.gw.upsert_user_profile(
            UserProfile(id=user.id, email=user.email, preferences={"theme": "dark"})
        )
        await self.gw.upsert_user_profile(
            UserProfile(id=user.id, email=user.email, preferences={"theme": "light"})
        )
        profile = await self.gw.get_user_profile(user.id)
        self.assertEqual(profile.preferences, {"theme": "light"})
        self.assertEqual(len(self.fake.tables["user_profiles"]), 1)


if __name__ == "__main__":
    unittest.main()
