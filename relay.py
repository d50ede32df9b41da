from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass

import uvicorn

from admission.executor import ReplyExecutor
from admission.quota import QuotaLedger
from admission.scheduler import BacklogScheduler
from admission.service import ReplyEngine
from admission.sessions import SessionRegistry
from completion.client import CompletionClient
from completion.guidelines import load_reply_guidelines
from completion.prompt import build_prompt_text
from config.settings import RelaySettings
from config.settings import load_settings
from db.migrate import init_db
from ingestion.chat import create_chat_router
from ingestion.webhook import create_webhook_app
from jobs.backlog import backlog_loop
from replies.store import insert_reply_task_sync

REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
MIGRATIONS_DIR = os.path.join(REPO_ROOT, "migrations")


@dataclass(frozen=True)
class RelayRuntime:
    settings: RelaySettings
    engine: ReplyEngine
    scheduler: BacklogScheduler
    db_conn: object
    db_lock: asyncio.Lock
    chat_client: CompletionClient | None = None


def build_runtime(
    settings: RelaySettings,
    *,
    completion_client: CompletionClient | None = None,
    chat_client: CompletionClient | None = None,
) -> RelayRuntime:
    guidelines, warning = load_reply_guidelines(settings.guidelines_path, max_chars_hint=settings.reply_soft_chars)
    if warning:
        print(f"[CFG] {warning}")

    if completion_client is None:
        completion_client = CompletionClient.from_settings(settings, system_prompt=guidelines.to_prompt_block())
    if not settings.chat_enabled:
        chat_client = None
    elif chat_client is None:
        chat_client = CompletionClient.from_settings(settings, model=settings.chat_model)

    db_conn = init_db(settings.db_path, MIGRATIONS_DIR)
    db_lock = asyncio.Lock()

    ledger = QuotaLedger(
        global_daily_limit=settings.global_daily_limit,
        user_daily_limit=settings.user_daily_limit,
        user_minute_limit=settings.user_minute_limit,
        timezone_name=settings.quota_timezone,
    )
    executor = ReplyExecutor(
        ledger=ledger,
        sessions=SessionRegistry(),
        build_prompt_text=build_prompt_text,
        complete_sync=completion_client.complete_sync,
        db_lock=db_lock,
        db_conn=db_conn,
        insert_reply_task_sync=insert_reply_task_sync,
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.completion_timeout_seconds,
        soft_chars=settings.reply_soft_chars,
        hard_chars=settings.reply_hard_chars,
    )
    engine = ReplyEngine(executor=executor, ledger=ledger)
    scheduler = BacklogScheduler(
        backlog=engine.backlog,
        ledger=ledger,
        handle_fn=engine.run_serialized,
        spawn=engine.spawn,
    )
    return RelayRuntime(
        settings=settings,
        engine=engine,
        scheduler=scheduler,
        db_conn=db_conn,
        db_lock=db_lock,
        chat_client=chat_client,
    )


def create_app(runtime: RelayRuntime):
    @asynccontextmanager
    async def lifespan(_app):
        loop_task = asyncio.create_task(
            backlog_loop(scheduler=runtime.scheduler, interval_seconds=runtime.settings.tick_seconds)
        )
        print(f"[Relay] backlog loop started tick={runtime.settings.tick_seconds}s")
        try:
            yield
        finally:
            loop_task.cancel()
            try:
                await loop_task
            except asyncio.CancelledError:
                pass
            await runtime.engine.wait_idle()
            print(f"[Relay] shutdown backlog_left={len(runtime.engine.backlog)}")

    app = create_webhook_app(runtime.engine, api_key=runtime.settings.webhook_api_key, lifespan=lifespan)
    if runtime.chat_client is not None:
        app.include_router(
            create_chat_router(
                runtime.chat_client,
                max_tokens=runtime.settings.max_tokens,
                timeout_seconds=runtime.settings.completion_timeout_seconds,
                reply_limit=runtime.settings.reply_hard_chars,
            )
        )
    return app


def main() -> None:
    settings = load_settings()
    if not settings.completion_api_key:
        raise RuntimeError("Missing OPENAI_API_KEY env var")
    runtime = build_runtime(settings)
    app = create_app(runtime)
    print(f"[Relay] listening on http://{settings.host}:{settings.port}/webhook")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
