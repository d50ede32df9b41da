from __future__ import annotations

import hmac
from typing import Any

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import PlainTextResponse

from admission.models import EventValidationError
from ingestion.payloads import extract_mentions
from ingestion.payloads import parse_mention


async def relay_mentions(engine, tweets: list[Any]) -> dict[str, int]:
    """Normalize each raw tweet and hand it to the engine; returns outcome counts."""
    outcomes: dict[str, int] = {}
    for raw in tweets:
        try:
            event = parse_mention(raw)
        except EventValidationError as e:
            print(f"[Webhook] action=reject reason=invalid error={e}")
            outcomes["invalid"] = outcomes.get("invalid", 0) + 1
            continue
        outcome = await engine.on_event(event)
        outcomes[outcome] = outcomes.get(outcome, 0) + 1
    return outcomes


def _api_key_matches(expected: str | None, received: str | None) -> bool:
    if not expected:
        return True
    return hmac.compare_digest(str(expected).encode("utf-8"), str(received or "").encode("utf-8"))


def create_webhook_app(engine, *, api_key: str | None = None, lifespan=None) -> FastAPI:
    app = FastAPI(title="mention-relay webhook", lifespan=lifespan)

    @app.get("/", response_class=PlainTextResponse)
    async def index() -> str:
        return "Mention webhook receiver is running."

    @app.post("/", response_class=PlainTextResponse)
    async def delivery_check() -> str:
        # Upstream "test webhook" button posts here.
        return "Test received successfully"

    @app.post("/webhook", response_class=PlainTextResponse)
    async def webhook(request: Request, background_tasks: BackgroundTasks) -> str:
        # Always acknowledge; the upstream only cares that delivery landed.
        if not _api_key_matches(api_key, request.headers.get("x-api-key")):
            print("[Webhook] action=reject reason=unauthorized")
            return "Webhook received successfully"

        try:
            payload = await request.json()
        except ValueError:
            print("[Webhook] action=reject reason=invalid_json")
            return "Webhook received successfully"

        tweets = extract_mentions(payload)
        if tweets:
            print(f"[Webhook] action=receive tweets={len(tweets)}")
            background_tasks.add_task(relay_mentions, engine, tweets)
        return "Webhook received successfully"

    return app
