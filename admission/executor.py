from __future__ import annotations

import asyncio
from typing import Callable

from admission.models import CompletionRequest
from admission.models import MentionEvent
from admission.models import ReplyTask
from admission.quota import QuotaLedger
from admission.sessions import SessionRegistry
from config.defaults import COMPLETION_MAX_TOKENS
from config.defaults import COMPLETION_TIMEOUT_SECONDS
from config.defaults import REPLY_HARD_CHARS
from config.defaults import REPLY_SOFT_CHARS
from replies.store import DuplicateReplyTask


def shape_reply(text: str, *, soft_chars: int = REPLY_SOFT_CHARS, hard_chars: int = REPLY_HARD_CHARS) -> str:
    """First line only, cut to the intended length and then the platform limit."""
    lines = (text or "").strip().splitlines()
    first = lines[0].strip() if lines else ""
    first = first[: max(0, int(soft_chars))]
    return first[: max(0, int(hard_chars))]


class ReplyExecutor:
    """One end-to-end reply attempt for an event the caller already admitted.

    Quota and session state are read and written before the first await, so
    interleaved attempts for the same user always see each other's charges.
    """

    def __init__(
        self,
        *,
        ledger: QuotaLedger,
        sessions: SessionRegistry,
        build_prompt_text: Callable[[MentionEvent], str],
        complete_sync: Callable[[CompletionRequest], str],
        db_lock,
        db_conn,
        insert_reply_task_sync: Callable,
        max_tokens: int = COMPLETION_MAX_TOKENS,
        timeout_seconds: float = COMPLETION_TIMEOUT_SECONDS,
        soft_chars: int = REPLY_SOFT_CHARS,
        hard_chars: int = REPLY_HARD_CHARS,
    ) -> None:
        self.ledger = ledger
        self.sessions = sessions
        self.build_prompt_text = build_prompt_text
        self.complete_sync = complete_sync
        self.db_lock = db_lock
        self.db_conn = db_conn
        self.insert_reply_task_sync = insert_reply_task_sync
        self.max_tokens = int(max_tokens)
        self.timeout_seconds = float(timeout_seconds)
        self.soft_chars = int(soft_chars)
        self.hard_chars = int(hard_chars)

    async def execute(self, event: MentionEvent) -> str:
        user_id = event.author_id

        if not self.ledger.daily_allowed(user_id):
            return "quota_exhausted"
        self.ledger.charge_daily(user_id)
        session_id = self.sessions.session_for(user_id)

        print(f"[Reply] action=complete event={event.id} user={user_id} session={session_id}")
        try:
            request = CompletionRequest(
                session_id=session_id,
                prompt_text=self.build_prompt_text(event),
                max_tokens=self.max_tokens,
            )
            # Only the wait is bounded; the worker thread finishes on its own.
            raw_reply = await asyncio.wait_for(
                asyncio.to_thread(self.complete_sync, request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            print(
                f"[Reply] action=complete result=timeout event={event.id} user={user_id} "
                f"timeout={self.timeout_seconds}s"
            )
            return "completion_failed"
        except Exception as e:
            print(f"[Reply] action=complete result=error event={event.id} user={user_id} error={e}")
            return "completion_failed"

        content = shape_reply(raw_reply, soft_chars=self.soft_chars, hard_chars=self.hard_chars)
        if not content:
            print(f"[Reply] action=complete result=empty event={event.id} user={user_id}")
            return "empty_reply"

        task = ReplyTask(
            conversation_id=event.conversation_id,
            parent_event_id=event.id,
            content=content,
        )
        try:
            async with self.db_lock:
                await asyncio.to_thread(self.insert_reply_task_sync, self.db_conn, task)
        except DuplicateReplyTask:
            print(f"[Reply] action=persist result=duplicate conversation={task.conversation_id} event={event.id}")
            return "duplicate"
        except Exception as e:
            print(f"[Reply] action=persist result=error conversation={task.conversation_id} event={event.id} error={e}")
            return "persist_failed"

        preview = content[:50].replace("\n", " ")
        print(
            f"[Reply] action=persist result=ok conversation={task.conversation_id} "
            f"event={event.id} chars={len(content)} preview={preview!r}"
        )
        return "persisted"
