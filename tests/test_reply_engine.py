from __future__ import annotations

import asyncio
import sqlite3
import unittest
from pathlib import Path
from unittest import mock

from admission.executor import ReplyExecutor
from admission.models import MentionEvent
from admission.quota import QuotaLedger
from admission.scheduler import BacklogScheduler
from admission.service import ReplyEngine
from admission.sessions import SessionRegistry
from completion.prompt import build_prompt_text
from db.migrate import apply_sqlite_migrations
from jobs.backlog import backlog_loop
from replies.store import count_reply_tasks_sync
from replies.store import insert_reply_task_sync


def _migrations_dir() -> str:
    return str(Path(__file__).resolve().parents[1] / "migrations")


class _Clock:
    def __init__(self, start: float = 1_709_294_400.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _CountingCompletion:
    def __init__(self):
        self.calls = 0

    def __call__(self, request):
        self.calls += 1
        return f"reply for {request.session_id}"


def _event(event_id: str, user_id: str) -> MentionEvent:
    return MentionEvent(id=event_id, author_id=user_id, text=f"@relay ping {event_id}")


class _Harness:
    def __init__(self):
        self.clock = _Clock()
        self.conn = sqlite3.connect(":memory:", check_same_thread=False)
        apply_sqlite_migrations(self.conn, _migrations_dir())
        self.ledger = QuotaLedger(clock=self.clock)
        self.completion = _CountingCompletion()
        self.executor = ReplyExecutor(
            ledger=self.ledger,
            sessions=SessionRegistry(clock=self.clock),
            build_prompt_text=build_prompt_text,
            complete_sync=self.completion,
            db_lock=asyncio.Lock(),
            db_conn=self.conn,
            insert_reply_task_sync=insert_reply_task_sync,
        )
        self.engine = ReplyEngine(executor=self.executor, ledger=self.ledger)
        self.scheduler = BacklogScheduler(
            backlog=self.engine.backlog,
            ledger=self.ledger,
            handle_fn=self.engine.run_serialized,
            spawn=self.engine.spawn,
        )

    def persisted(self) -> int:
        return count_reply_tasks_sync(self.conn)


class OnEventTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = _Harness()

    async def asyncTearDown(self):
        await self.h.engine.wait_idle()
        self.h.conn.close()

    async def test_invalid_event_mutates_nothing(self):
        self.assertEqual(await self.h.engine.on_event(MentionEvent(id="", author_id="alice", text="x")), "invalid")
        self.assertEqual(await self.h.engine.on_event(MentionEvent(id="t1", author_id="", text="x")), "invalid")
        self.assertEqual(await self.h.engine.on_event(None), "invalid")
        self.assertEqual(len(self.h.engine.dedup), 0)
        self.assertEqual(self.h.ledger.minute_count("alice"), 0)

    async def test_invalid_event_id_can_be_admitted_later(self):
        await self.h.engine.on_event(MentionEvent(id="t1", author_id="", text="x"))
        self.assertEqual(await self.h.engine.on_event(_event("t1", "alice")), "dispatched")

    async def test_same_event_twice_is_admitted_once(self):
        self.assertEqual(await self.h.engine.on_event(_event("t1", "alice")), "dispatched")
        self.assertEqual(await self.h.engine.on_event(_event("t1", "alice")), "duplicate_event")
        await self.h.engine.wait_idle()
        self.assertEqual(len(self.h.engine.dedup), 1)
        self.assertEqual(self.h.completion.calls, 1)
        self.assertEqual(self.h.persisted(), 1)

    async def test_on_event_returns_before_reply_completes(self):
        outcome = await self.h.engine.on_event(_event("t1", "alice"))
        self.assertEqual(outcome, "dispatched")
        self.assertEqual(self.h.persisted(), 0)
        self.assertEqual(self.h.engine.pending_tasks(), 1)
        await self.h.engine.wait_idle()
        self.assertEqual(self.h.persisted(), 1)

    async def test_user_over_daily_cap_is_dropped_not_queued(self):
        for _ in range(20):
            self.h.ledger.charge_daily("alice")
        self.assertEqual(await self.h.engine.on_event(_event("t1", "alice")), "quota_exhausted")
        self.assertEqual(len(self.h.engine.backlog), 0)
        self.assertEqual(self.h.ledger.minute_count("alice"), 0)

    async def test_global_cap_across_105_users(self):
        outcomes = [await self.h.engine.on_event(_event(f"t{i}", f"user{i}")) for i in range(105)]
        self.assertEqual(outcomes.count("dispatched"), 105)
        await self.h.engine.wait_idle()

        self.assertEqual(self.h.completion.calls, 100)
        self.assertEqual(self.h.persisted(), 100)
        self.assertEqual(self.h.ledger.global_count(), 100)
        self.assertEqual(await self.h.engine.on_event(_event("late", "user_late")), "quota_exhausted")

    async def test_burst_of_fifteen_queues_five_then_tick_drains(self):
        outcomes = []
        for i in range(15):
            outcomes.append(await self.h.engine.on_event(_event(f"t{i}", "alice")))
            self.h.clock.advance(0.5)
        self.assertEqual(outcomes, ["dispatched"] * 10 + ["queued"] * 5)
        await self.h.engine.wait_idle()
        self.assertEqual(self.h.persisted(), 10)
        self.assertEqual([e.id for e in self.h.engine.backlog.peek_user("alice")], [f"t{i}" for i in range(10, 15)])

        # Window still open: tick starts a drain that admits nothing.
        await asyncio.gather(*(await self.h.scheduler.run_tick()))
        self.assertEqual(len(self.h.engine.backlog), 5)

        self.h.clock.advance(61)
        tasks = await self.h.scheduler.run_tick()
        self.assertEqual(len(tasks), 1)
        await asyncio.gather(*tasks)
        self.assertEqual(len(self.h.engine.backlog), 0)
        self.assertEqual(self.h.persisted(), 15)
        self.assertEqual(self.h.ledger.user_count("alice"), 15)
        self.assertEqual(self.h.ledger.minute_count("alice"), 5)

    async def test_executions_for_one_user_never_overlap(self):
        active = {"now": 0, "max": 0}

        class _SlowExecutor:
            async def execute(self, event):
                active["now"] += 1
                active["max"] = max(active["max"], active["now"])
                await asyncio.sleep(0.01)
                active["now"] -= 1
                return "persisted"

        engine = ReplyEngine(executor=_SlowExecutor(), ledger=self.h.ledger)
        for i in range(5):
            await engine.on_event(_event(f"s{i}", "carol"))
        await engine.wait_idle()
        self.assertEqual(active["max"], 1)

    async def test_unexpected_executor_error_is_contained(self):
        class _ExplodingExecutor:
            async def execute(self, event):
                raise RuntimeError("boom")

        engine = ReplyEngine(executor=_ExplodingExecutor(), ledger=self.h.ledger)
        self.assertEqual(await engine.run_serialized(_event("x1", "dave")), "error")


class SchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = _Harness()

    async def asyncTearDown(self):
        await self.h.engine.wait_idle()
        self.h.conn.close()

    async def test_tick_purges_user_out_of_daily_quota(self):
        for i in range(8):
            self.h.engine.backlog.enqueue("alice", _event(f"a{i}", "alice"))
        self.h.engine.backlog.enqueue("bob", _event("b0", "bob"))
        for _ in range(20):
            self.h.ledger.charge_daily("alice")

        tasks = await self.h.scheduler.run_tick()
        self.assertEqual(self.h.engine.backlog.peek_user("alice"), [])
        self.assertEqual(len(tasks), 1)
        await asyncio.gather(*tasks)
        self.assertEqual(len(self.h.engine.backlog), 0)
        self.assertEqual(self.h.completion.calls, 1)

    async def test_tick_purges_everyone_when_global_cap_trips(self):
        for i in range(100):
            self.h.ledger.charge_daily(f"filler{i % 10}")
        for user in ("alice", "bob"):
            for i in range(3):
                self.h.engine.backlog.enqueue(user, _event(f"{user}{i}", user))

        tasks = await self.h.scheduler.run_tick()
        self.assertEqual(tasks, [])
        self.assertEqual(len(self.h.engine.backlog), 0)

    async def test_tick_skips_user_with_drain_in_flight(self):
        gate = asyncio.Event()
        handled: list[str] = []

        async def _slow_handle(event):
            handled.append(event.id)
            await gate.wait()

        scheduler = BacklogScheduler(backlog=self.h.engine.backlog, ledger=self.h.ledger, handle_fn=_slow_handle)
        for i in range(3):
            self.h.engine.backlog.enqueue("alice", _event(f"a{i}", "alice"))

        first = await scheduler.run_tick()
        await asyncio.sleep(0)
        self.assertTrue(scheduler.is_draining("alice"))
        second = await scheduler.run_tick()
        self.assertEqual(second, [])

        gate.set()
        await asyncio.gather(*first)
        self.assertEqual(handled, ["a0", "a1", "a2"])
        self.assertFalse(scheduler.is_draining("alice"))

    async def test_backlog_loop_survives_tick_errors(self):
        class _FlakyScheduler:
            def __init__(self):
                self.ticks = 0

            async def run_tick(self):
                self.ticks += 1
                if self.ticks == 1:
                    raise RuntimeError("tick failed")
                return []

        flaky = _FlakyScheduler()
        with mock.patch("jobs.backlog.asyncio.sleep", new=mock.AsyncMock()) as sleep_mock:
            await backlog_loop(scheduler=flaky, interval_seconds=5, max_ticks=3)
        self.assertEqual(flaky.ticks, 3)
        self.assertEqual(sleep_mock.await_count, 3)
        sleep_mock.assert_awaited_with(5.0)


if __name__ == "__main__":
    unittest.main()
