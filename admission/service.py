from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from admission.backlog import BacklogQueue
from admission.dedup import Deduplicator
from admission.executor import ReplyExecutor
from admission.models import MentionEvent
from admission.quota import QuotaLedger


class ReplyEngine:
    """Admission path for inbound mentions.

    ``on_event`` decides synchronously (validate, dedup, daily tier, minute
    tier) and then either hands the event to a background task or parks it in
    the backlog. It never waits for a reply and never raises.
    """

    def __init__(
        self,
        *,
        executor: ReplyExecutor,
        ledger: QuotaLedger,
        dedup: Deduplicator | None = None,
        backlog: BacklogQueue | None = None,
    ) -> None:
        self.executor = executor
        self.ledger = ledger
        self.dedup = dedup or Deduplicator()
        self.backlog = backlog or BacklogQueue()
        self._user_locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_serialized(self, event: MentionEvent) -> str:
        # One execution per user at a time, shared by live dispatch and backlog drains.
        async with self._user_lock(event.author_id):
            try:
                return await self.executor.execute(event)
            except Exception as e:
                print(f"[Admission] action=execute result=error event={event.id} user={event.author_id} error={e}")
                return "error"

    async def on_event(self, event: MentionEvent | None) -> str:
        try:
            return self._admit(event)
        except Exception as e:
            print(f"[Admission] action=admit result=error error={e}")
            return "error"

    def _admit(self, event: MentionEvent | None) -> str:
        event_id = str(getattr(event, "id", "") or "").strip()
        user_id = str(getattr(event, "author_id", "") or "").strip()
        if not event_id or not user_id:
            print(f"[Admission] action=reject reason=invalid event={event_id or '-'} user={user_id or '-'}")
            return "invalid"

        if not self.dedup.admit(event_id):
            print(f"[Admission] action=skip reason=duplicate event={event_id}")
            return "duplicate_event"

        if not self.ledger.daily_allowed(user_id):
            print(
                f"[Admission] action=drop reason=daily_quota event={event_id} user={user_id} "
                f"global={self.ledger.global_count()} user_count={self.ledger.user_count(user_id)}"
            )
            return "quota_exhausted"

        if self.ledger.try_consume_minute(user_id):
            self.spawn(self.run_serialized(event))
            return "dispatched"

        depth = self.backlog.enqueue(user_id, event)
        print(f"[Queue] action=enqueue reason=minute_quota event={event_id} user={user_id} depth={depth}")
        return "queued"

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def pending_tasks(self) -> int:
        return len(self._tasks)
