from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from admission.models import CompletionRequest
from completion.client import CompletionClient
from completion.client import CompletionError
from config.defaults import CHAT_SESSION_PREFIX
from config.defaults import COMPLETION_MAX_TOKENS
from config.defaults import COMPLETION_TIMEOUT_SECONDS
from config.defaults import REPLY_HARD_CHARS


def clip_chat_reply(text: str, limit: int = REPLY_HARD_CHARS) -> str:
    text = str(text or "")
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def chat_session_id(user_id: str) -> str:
    # Stable per user, so the completion service keeps one conversation per app user.
    return f"{CHAT_SESSION_PREFIX}{user_id}"


def create_chat_router(
    completion: CompletionClient,
    *,
    max_tokens: int = COMPLETION_MAX_TOKENS,
    timeout_seconds: float = COMPLETION_TIMEOUT_SECONDS,
    reply_limit: int = REPLY_HARD_CHARS,
) -> APIRouter:
    """Direct request/response proxy to the completion service.

    Unlike mentions, chat requests bypass dedup, quotas and the backlog: the
    caller waits for the reply and gets it in the response body.
    """
    router = APIRouter()

    @router.get("/chat")
    async def chat_status() -> dict[str, str]:
        return {"status": "proxy running", "endpoint": "/chat"}

    @router.post("/chat")
    async def chat(request: Request):
        try:
            payload: Any = await request.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = {}

        user_id = str(payload.get("userId") or "").strip()
        message = str(payload.get("message") or "").strip()
        if not user_id or not message:
            return JSONResponse(status_code=400, content={"error": "missing userId or message"})

        print(f"[Chat] action=request user={user_id} chars={len(message)}")
        completion_request = CompletionRequest(
            session_id=chat_session_id(user_id),
            prompt_text=message,
            max_tokens=max_tokens,
        )
        try:
            raw_reply = await asyncio.wait_for(
                asyncio.to_thread(completion.complete_sync, completion_request),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            print(f"[Chat] action=request result=timeout user={user_id} timeout={timeout_seconds}s")
            return JSONResponse(status_code=500, content={"error": "completion service unreachable"})
        except CompletionError as e:
            print(f"[Chat] action=request result=error user={user_id} status={e.status_code} error={e}")
            if e.status_code:
                return JSONResponse(
                    status_code=int(e.status_code),
                    content={"error": "completion service error", "details": e.details},
                )
            return JSONResponse(status_code=500, content={"error": "completion service unreachable"})

        reply = clip_chat_reply(raw_reply, reply_limit)
        print(f"[Chat] action=request result=ok user={user_id} chars={len(reply)}")
        return {"status": "success", "reply": reply, "length": len(reply)}

    return router
