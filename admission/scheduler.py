from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from admission.backlog import BacklogQueue
from admission.models import MentionEvent
from admission.quota import QuotaLedger


class BacklogScheduler:
    def __init__(
        self,
        *,
        backlog: BacklogQueue,
        ledger: QuotaLedger,
        handle_fn: Callable[[MentionEvent], Awaitable[object]],
        spawn: Callable[..., asyncio.Task] = asyncio.create_task,
    ) -> None:
        self.backlog = backlog
        self.ledger = ledger
        self.handle_fn = handle_fn
        self.spawn = spawn
        self._draining: dict[str, asyncio.Task] = {}

    def is_draining(self, user_id: str) -> bool:
        task = self._draining.get(user_id)
        return task is not None and not task.done()

    async def run_tick(self) -> list[asyncio.Task]:
        """Purge users out of daily quota, start drains for the rest.

        Returns the drain tasks started by this tick. A user whose previous
        drain is still running is left alone until a later tick.
        """
        started: list[asyncio.Task] = []
        for user_id in self.backlog.users_with_backlog():
            if not self.ledger.daily_allowed(user_id):
                dropped = self.backlog.purge(user_id)
                print(
                    f"[Queue] action=purge reason=daily_quota user={user_id} dropped={dropped} "
                    f"global={self.ledger.global_count()} user_count={self.ledger.user_count(user_id)}"
                )
                continue
            if self.is_draining(user_id):
                continue
            task = self.spawn(self._drain_user(user_id))
            self._draining[user_id] = task
            started.append(task)
        return started

    async def _drain_user(self, user_id: str) -> int:
        try:
            handled = await self.backlog.drain_while_admissible(
                user_id,
                self.ledger.try_consume_minute,
                self.handle_fn,
            )
            if handled:
                remaining = len(self.backlog.peek_user(user_id))
                print(f"[Queue] action=drain user={user_id} handled={handled} remaining={remaining}")
            return handled
        except Exception as e:
            print(f"[Queue] action=drain result=error user={user_id} error={e}")
            return 0
        finally:
            self._draining.pop(user_id, None)
