import unittest
from datetime import datetime, timedelta, timezone

from core.contracts import (
    DetectionDraft,
    Identity,
    MonitorSessionDraft,
    MonitorSnapshot,
    SessionStatus,
    UserProfile,
)
from core.errors import GatewayError, ValidationError
from core.roast import RoastLevel
from sync import AuthEvent, create_gateway
from sync.memory import MemoryGateway

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class _StepClock:
    def __init__(self):
        self.now = T0

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class TestMemoryGateway(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.gw = MemoryGateway(clock=_StepClock())

    def test_registered_by_name(self):
        self.assertIsInstance(create_gateway("memory"), MemoryGateway)

    async def test_records_are_listed_newest_first_per_owner(self):
        draft = DetectionDraft("a.jpg", 65, "中烘", 0.9)
        first = await self.gw.insert_detection_record(draft, None)
        second = await self.gw.insert_detection_record(draft, None)
        await self.gw.insert_detection_record(draft, "someone")

        anon = await self.gw.list_detection_records(None)
        self.assertEqual([r.id for r in anon], [second.id, first.id])
        self.assertEqual(len(await self.gw.list_detection_records("someone")), 1)

        await self.gw.delete_detection_record(first.id)
        self.assertEqual(
            [r.id for r in await self.gw.list_detection_records(None)], [second.id]
        )

    async def test_anonymous_writes_can_be_refused(self):
        gw = MemoryGateway(allow_anonymous_writes=False)
        with self.assertRaises(GatewayError) as cm:
            await gw.insert_detection_record(DetectionDraft("a", 50, "中深烘", 0.8), None)
        self.assertEqual(cm.exception.status, 401)

    async def test_session_update_and_snapshots(self):
        session = await self.gw.insert_monitor_session(
            MonitorSessionDraft("Test Roast", 65, "中烘", T0), None
        )
        self.assertEqual(session.status, SessionStatus.ACTIVE)
        updated = await self.gw.update_monitor_session(
            session.id, {"status": SessionStatus.COMPLETED, "end_time": T0}
        )
        self.assertEqual(updated.status, SessionStatus.COMPLETED)
        self.assertEqual(updated.end_time, T0)

        with self.assertRaises(ValidationError):
            await self.gw.update_monitor_session(session.id, {"owner_id": "x"})
        with self.assertRaises(GatewayError) as cm:
            await self.gw.update_monitor_session("missing", {"status": "paused"})
        self.assertEqual(cm.exception.status, 404)

        for i in (2, 1):
            await self.gw.insert_monitor_snapshot(
                MonitorSnapshot(
                    id="local",
                    session_id=session.id,
                    roast_index=60 + i,
                    roast_label=RoastLevel.MEDIUM,
                    confidence=0.9,
                    timestamp=T0 + timedelta(seconds=i),
                )
            )
        snaps = await self.gw.list_monitor_snapshots(session.id)
        self.assertEqual([s.roast_index for s in snaps], [61, 62])
        self.assertNotIn("local", [s.id for s in snaps])

    async def test_snapshot_for_unknown_session_is_rejected(self):
        snap = MonitorSnapshot("p", "nope", 60, RoastLevel.MEDIUM, 0.9, T0)
        with self.assertRaises(GatewayError) as cm:
            await self.gw.insert_monitor_snapshot(snap)
        self.assertEqual(cm.exception.status, 409)

    async def test_auth_flow_emits_events(self):
        events = []
        unsubscribe = self.gw.on_auth_state_change(
            lambda event, identity: events.append((event, identity.authenticated))
        )
        user = await self.gw.sign_up("Roaster@Example.com", "pw")
        self.assertTrue(user.authenticated)
        self.assertEqual(user.email, "roaster@example.com")
        self.assertEqual(await self.gw.get_current_identity(), user)

        with self.assertRaises(GatewayError):
            await self.gw.sign_up("roaster@example.com", "pw")
        with self.assertRaises(GatewayError):
            await self.gw.sign_in("roaster@example.com", "wrong")

        await self.gw.sign_out()
        await self.gw.sign_out()
        self.assertIsNone(await self.gw.get_current_identity())
        unsubscribe()
        await self.gw.sign_in("roaster@example.com", "pw")
        self.assertEqual(
            events, [(AuthEvent.SIGNED_IN, True), (AuthEvent.SIGNED_OUT, False)]
        )

    async def test_listener_errors_are_logged(self):
        def broken(_event, _identity):
            raise RuntimeError("listener bug")

        self.gw.on_auth_state_change(broken)
        with self.assertLogs("roast_monitor.sync", level="ERROR"):
            identity = await self.gw.sign_up("a@b.c", "pw")
        self.assertIsInstance(identity, Identity)

    async def test_profile_upsert(self):
        profile = UserProfile(id="u1", email="a@b.c", preferences={"theme": "dark"})
        saved = await self.gw.upsert_user_profile(profile)
        self.assertIsNotNone(saved.created_at)
        again = await self.gw.upsert_user_profile(
            UserProfile(id="u1", email="a@b.c", preferences={"theme": "light"})
        )
        self.assertEqual(again.created_at, saved.created_at)
        self.assertEqual((await self.gw.get_user_profile("u1")).preferences["theme"], "light")
        self.assertIsNone(await self.gw.get_user_profile("u2"))


if __name__ == "__main__":
    unittest.main()
