from __future__ import annotations

import asyncio

from config.defaults import BACKLOG_TICK_SECONDS


async def backlog_loop(
    *,
    scheduler,
    interval_seconds: float = BACKLOG_TICK_SECONDS,
    max_ticks: int | None = None,
) -> None:
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        try:
            await scheduler.run_tick()
        except Exception as e:
            print(f"[Queue] backlog loop error: {e}")
        ticks += 1
        await asyncio.sleep(max(1.0, float(interval_seconds)))
