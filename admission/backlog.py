from __future__ import annotations

from collections import deque
from typing import Awaitable, Callable

from admission.models import MentionEvent


class BacklogQueue:
    """Per-user FIFO buffers of events deferred by the minute tier.

    Entries only ever leave through ``drain_while_admissible`` (head first,
    one admission check per entry) or ``purge``.
    """

    def __init__(self) -> None:
        self._queues: dict[str, deque[MentionEvent]] = {}

    def enqueue(self, user_id: str, event: MentionEvent) -> int:
        queue = self._queues.setdefault(user_id, deque())
        queue.append(event)
        return len(queue)

    def peek_user(self, user_id: str) -> list[MentionEvent]:
        return list(self._queues.get(user_id, ()))

    def users_with_backlog(self) -> list[str]:
        return [user_id for user_id, queue in self._queues.items() if queue]

    async def drain_while_admissible(
        self,
        user_id: str,
        admit_fn: Callable[[str], bool],
        handle_fn: Callable[[MentionEvent], Awaitable[object]],
    ) -> int:
        handled = 0
        while True:
            queue = self._queues.get(user_id)
            if not queue:
                break
            if not admit_fn(user_id):
                break
            event = queue.popleft()
            handled += 1
            await handle_fn(event)
        self._drop_if_empty(user_id)
        return handled

    def purge(self, user_id: str) -> int:
        queue = self._queues.pop(user_id, None)
        return len(queue) if queue else 0

    def _drop_if_empty(self, user_id: str) -> None:
        queue = self._queues.get(user_id)
        if queue is not None and not queue:
            del self._queues[user_id]

    def __len__(self) -> int:
        return sum(len(queue) for queue in self._queues.values())
