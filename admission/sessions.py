from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from config.defaults import SESSION_ID_PREFIX
from config.defaults import SESSION_TTL_SECONDS


@dataclass(slots=True)
class Session:
    session_id: str
    created_at: float


class SessionRegistry:
    def __init__(
        self,
        *,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._last_stamp_ms = 0

    def _next_stamp_ms(self, now: float) -> int:
        # Strictly increasing, so two mints never share a stamp.
        stamp = max(int(now * 1000), self._last_stamp_ms + 1)
        self._last_stamp_ms = stamp
        return stamp

    def session_for(self, user_id: str) -> str:
        now = self._clock()
        session = self._sessions.get(user_id)
        if session is None or (now - session.created_at) > self.ttl_seconds:
            session_id = f"{SESSION_ID_PREFIX}{user_id}_{self._next_stamp_ms(now)}"
            session = Session(session_id=session_id, created_at=now)
            self._sessions[user_id] = session
            print(f"[Session] action=mint user={user_id} session={session_id}")
        return session.session_id

    def peek(self, user_id: str) -> Session | None:
        return self._sessions.get(user_id)
