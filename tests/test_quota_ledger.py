from __future__ import annotations

import unittest
from datetime import datetime, timezone

from admission.quota import QuotaLedger


class _Clock:
    def __init__(self, start: float):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _ts(year, month, day, hour=12, minute=0) -> float:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp()


class DailyTierTests(unittest.TestCase):
    def test_global_cap_stops_at_limit(self):
        ledger = QuotaLedger(clock=_Clock(_ts(2024, 3, 1)))
        granted = 0
        for i in range(130):
            if ledger.charge_if_allowed(f"user_{i}"):
                granted += 1
        self.assertEqual(granted, 100)
        self.assertEqual(ledger.global_count(), 100)
        self.assertFalse(ledger.daily_allowed("someone_new"))

    def test_per_user_cap_stops_at_limit(self):
        ledger = QuotaLedger(clock=_Clock(_ts(2024, 3, 1)))
        results = [ledger.charge_if_allowed("alice") for _ in range(25)]
        self.assertEqual(results.count(True), 20)
        self.assertEqual(ledger.user_count("alice"), 20)
        self.assertTrue(ledger.daily_allowed("bob"))

    def test_daily_allowed_does_not_charge(self):
        ledger = QuotaLedger(clock=_Clock(_ts(2024, 3, 1)))
        for _ in range(5):
            self.assertTrue(ledger.daily_allowed("alice"))
        self.assertEqual(ledger.global_count(), 0)
        self.assertEqual(ledger.user_count("alice"), 0)

    def test_day_change_resets_all_counters(self):
        clock = _Clock(_ts(2024, 3, 1, 23, 30))
        ledger = QuotaLedger(clock=clock)
        for _ in range(20):
            ledger.charge_daily("alice")
        self.assertFalse(ledger.daily_allowed("alice"))

        clock.advance(60 * 60)
        self.assertTrue(ledger.daily_allowed("alice"))
        snap = ledger.snapshot()
        self.assertEqual(snap["day"], "2024-03-02")
        self.assertEqual(snap["global_count"], 0)
        self.assertEqual(snap["per_user"], {})

    def test_day_boundary_follows_configured_timezone(self):
        # 03:00 UTC on Jan 2 is still Jan 1 in New York.
        clock_ny = _Clock(_ts(2024, 1, 2, 3, 0))
        clock_utc = _Clock(_ts(2024, 1, 2, 3, 0))
        ny = QuotaLedger(timezone_name="America/New_York", clock=clock_ny)
        utc = QuotaLedger(timezone_name="UTC", clock=clock_utc)
        ny.charge_daily("alice")
        utc.charge_daily("alice")

        clock_ny.advance(2 * 60 * 60)
        clock_utc.advance(2 * 60 * 60)
        self.assertEqual(ny.user_count("alice"), 0)
        self.assertEqual(utc.user_count("alice"), 1)


class MinuteTierTests(unittest.TestCase):
    def test_ten_grants_per_window(self):
        ledger = QuotaLedger(clock=_Clock(_ts(2024, 3, 1)))
        results = [ledger.try_consume_minute("alice") for _ in range(12)]
        self.assertEqual(results, [True] * 10 + [False, False])
        self.assertEqual(ledger.minute_count("alice"), 10)

    def test_window_expires_only_after_sixty_seconds(self):
        clock = _Clock(_ts(2024, 3, 1))
        ledger = QuotaLedger(clock=clock)
        for _ in range(10):
            ledger.try_consume_minute("alice")

        clock.advance(60)
        self.assertFalse(ledger.try_consume_minute("alice"))

        clock.advance(0.5)
        self.assertTrue(ledger.try_consume_minute("alice"))
        self.assertEqual(ledger.minute_count("alice"), 1)

    def test_rejected_minute_check_does_not_touch_daily_tier(self):
        ledger = QuotaLedger(clock=_Clock(_ts(2024, 3, 1)))
        for _ in range(15):
            ledger.try_consume_minute("alice")
        self.assertEqual(ledger.global_count(), 0)
        self.assertEqual(ledger.user_count("alice"), 0)

    def test_windows_are_per_user(self):
        ledger = QuotaLedger(clock=_Clock(_ts(2024, 3, 1)))
        for _ in range(10):
            ledger.try_consume_minute("alice")
        self.assertFalse(ledger.try_consume_minute("alice"))
        self.assertTrue(ledger.try_consume_minute("bob"))


if __name__ == "__main__":
    unittest.main()
