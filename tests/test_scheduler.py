import asyncio
import unittest

from core.scheduler import LoopTimer, ManualClock


class TestManualClock(unittest.TestCase):
    def test_timers_fire_in_deadline_order(self):
        clock = ManualClock()
        fired = []
        fast = clock.timer()
        slow = clock.timer()
        fast.start(1.0, lambda: fired.append(("fast", clock.now)))
        slow.start(3.0, lambda: fired.append(("slow", clock.now)))

        count = clock.advance(3.0)

        self.assertEqual(count, 4)
        self.assertEqual(
            fired, [("fast", 1.0), ("fast", 2.0), ("fast", 3.0), ("slow", 3.0)]
        )
        self.assertEqual(clock.now, 3.0)

    def test_cancel_stops_firing(self):
        clock = ManualClock()
        fired = []
        timer = clock.timer()
        timer.start(1.0, lambda: fired.append(clock.now))
        clock.advance(2.0)
        timer.cancel()
        timer.cancel()
        clock.advance(5.0)
        self.assertEqual(fired, [1.0, 2.0])
        self.assertFalse(timer.active)

    def test_callback_errors_do_not_stop_timer(self):
        clock = ManualClock()
        calls = []

        def boom():
            calls.append(clock.now)
            raise RuntimeError("boom")

        timer = clock.timer()
        timer.start(1.0, boom)
        with self.assertLogs("roast_monitor.scheduler", level="ERROR"):
            clock.advance(2.0)
        self.assertEqual(calls, [1.0, 2.0])

    def test_rejects_bad_period_and_double_start(self):
        clock = ManualClock()
        timer = clock.timer()
        with self.assertRaises(ValueError):
            timer.start(0, lambda: None)
        timer.start(1.0, lambda: None)
        with self.assertRaises(RuntimeError):
            timer.start(1.0, lambda: None)

    def test_utcnow_follows_simulated_time(self):
        clock = ManualClock()
        t0 = clock.utcnow()
        clock.advance(9.0)
        self.assertEqual((clock.utcnow() - t0).total_seconds(), 9.0)


class TestLoopTimer(unittest.IsolatedAsyncioTestCase):
    async def test_fires_periodically_until_cancelled(self):
        fired = []
        timer = LoopTimer()
        timer.start(0.01, lambda: fired.append(1))
        await asyncio.sleep(0.055)
        timer.cancel()
        seen = len(fired)
        await asyncio.sleep(0.03)
        self.assertGreaterEqual(seen, 2)
        self.assertEqual(len(fired), seen)
        self.assertFalse(timer.active)


if __name__ == "__main__":
    unittest.main()
