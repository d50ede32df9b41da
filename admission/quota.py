from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

from config.defaults import DEFAULT_QUOTA_TIMEZONE
from config.defaults import GLOBAL_DAILY_LIMIT
from config.defaults import MINUTE_WINDOW_SECONDS
from config.defaults import USER_DAILY_LIMIT
from config.defaults import USER_MINUTE_LIMIT


@dataclass(slots=True)
class DailyCounters:
    day: date
    global_count: int = 0
    per_user: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class MinuteWindow:
    window_start: float
    count: int = 0


class QuotaLedger:
    """Three independent tiers: global/day, per-user/day, per-user/minute.

    Both the day roll and the minute window reset lazily, at the moment they
    are checked. Nothing charged here is ever refunded.
    """

    def __init__(
        self,
        *,
        global_daily_limit: int = GLOBAL_DAILY_LIMIT,
        user_daily_limit: int = USER_DAILY_LIMIT,
        user_minute_limit: int = USER_MINUTE_LIMIT,
        window_seconds: float = MINUTE_WINDOW_SECONDS,
        timezone_name: str = DEFAULT_QUOTA_TIMEZONE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.global_daily_limit = int(global_daily_limit)
        self.user_daily_limit = int(user_daily_limit)
        self.user_minute_limit = int(user_minute_limit)
        self.window_seconds = float(window_seconds)
        self.tz = ZoneInfo(timezone_name)
        self._clock = clock
        self._daily = DailyCounters(day=self._today())
        self._minute: dict[str, MinuteWindow] = {}

    def _today(self) -> date:
        return datetime.fromtimestamp(self._clock(), tz=self.tz).date()

    def _roll_day_if_needed(self) -> None:
        today = self._today()
        if self._daily.day != today:
            print(
                f"[Quota] action=day_reset day={today.isoformat()} "
                f"prev_global={self._daily.global_count} prev_users={len(self._daily.per_user)}"
            )
            self._daily = DailyCounters(day=today)

    # ---- daily tier ----

    def daily_allowed(self, user_id: str) -> bool:
        self._roll_day_if_needed()
        if self._daily.global_count >= self.global_daily_limit:
            return False
        if self._daily.per_user.get(user_id, 0) >= self.user_daily_limit:
            return False
        return True

    def charge_daily(self, user_id: str) -> None:
        self._roll_day_if_needed()
        self._daily.global_count += 1
        self._daily.per_user[user_id] = self._daily.per_user.get(user_id, 0) + 1

    def charge_if_allowed(self, user_id: str) -> bool:
        if not self.daily_allowed(user_id):
            return False
        self.charge_daily(user_id)
        return True

    # ---- minute tier ----

    def try_consume_minute(self, user_id: str) -> bool:
        now = self._clock()
        window = self._minute.get(user_id)
        if window is None or (now - window.window_start) > self.window_seconds:
            window = MinuteWindow(window_start=now)
            self._minute[user_id] = window
        if window.count >= self.user_minute_limit:
            return False
        window.count += 1
        return True

    # ---- observability ----

    def global_count(self) -> int:
        self._roll_day_if_needed()
        return self._daily.global_count

    def user_count(self, user_id: str) -> int:
        self._roll_day_if_needed()
        return self._daily.per_user.get(user_id, 0)

    def minute_count(self, user_id: str) -> int:
        window = self._minute.get(user_id)
        return window.count if window is not None else 0

    def snapshot(self) -> dict:
        self._roll_day_if_needed()
        return {
            "day": self._daily.day.isoformat(),
            "global_count": self._daily.global_count,
            "per_user": dict(self._daily.per_user),
            "minute": {uid: w.count for uid, w in self._minute.items()},
        }
