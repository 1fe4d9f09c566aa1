import json
import os
import tempfile
import unittest
from datetime import datetime, timezone

from core.contracts import (
    DetectionRecord,
    Identity,
    MonitorSession,
    MonitorSnapshot,
    SessionStatus,
    Settings,
)
from core.roast import RoastLevel
from store.persistence import PersistedState, StateFile

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def _state() -> PersistedState:
    session = MonitorSession(
        id="s1",
        name="Test Roast",
        target_roast_index=65,
        target_roast_label=RoastLevel.MEDIUM,
        start_time=T0,
        status=SessionStatus.COMPLETED,
        created_at=T0,
        end_time=T0,
        snapshots=[
            MonitorSnapshot("p1", "s1", 63, RoastLevel.MEDIUM, 0.9, T0, temperature=201.5)
        ],
    )
    record = DetectionRecord(
        id="r1",
        image_ref="beans.jpg",
        roast_index=72,
        roast_label=RoastLevel.MEDIUM_LIGHT,
        confidence=0.88,
        advisory="平衡",
        created_at=T0,
        owner_id="u1",
    )
    return PersistedState(
        detection_records=[record],
        monitor_sessions=[session],
        settings=Settings(language="en", theme="dark"),
        identity=Identity(id="u1", email="a@b.c", name="A", authenticated=True),
    )


class TestStateFile(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "nested", "state.json")
        self.file = StateFile(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    async def test_round_trip_reproduces_all_fields(self):
        state = _state()
        self.assertTrue(await self.file.save(state))
        self.assertEqual(self.file.restore(), state)

        with open(self.path, "r", encoding="utf-8") as f:
            doc = json.load(f)
        self.assertEqual(
            sorted(doc), ["detectionRecords", "identity", "monitorSessions", "settings"]
        )

    def test_missing_file_yields_defaults(self):
        self.assertEqual(self.file.restore(), PersistedState())

    def test_corrupt_file_yields_defaults_with_warning(self):
        os.makedirs(os.path.dirname(self.path))
        for text in ("{not json", "[]", '{"detectionRecords": []}',
                     '{"detectionRecords": [{"id": 1}], "monitorSessions": [],'
                     ' "settings": {}, "identity": {}}'):
            with self.subTest(text=text):
                with open(self.path, "w", encoding="utf-8") as f:
                    f.write(text)
                with self.assertLogs("roast_monitor.persistence", level="WARNING"):
                    restored = self.file.restore()
                self.assertEqual(restored, PersistedState())

    async def test_save_failure_is_logged_not_raised(self):
        blocker = os.path.join(self.tmp.name, "file")
        with open(blocker, "w") as f:
            f.write("x")
        bad = StateFile(os.path.join(blocker, "state.json"))
        with self.assertLogs("roast_monitor.persistence", level="WARNING"):
            ok = await bad.save(_state())
        self.assertFalse(ok)


if __name__ == "__main__":
    unittest.main()
