from __future__ import annotations

from typing import Any

from openai import OpenAI

from admission.models import CompletionRequest


class CompletionError(RuntimeError):
    """Raised for any failed completion call.

    ``status_code`` and ``details`` are set when the service answered with an
    error response; both stay None for connection failures and timeouts.
    """

    def __init__(self, message: str, *, status_code: int | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class CompletionClient:
    """Single-shot chat completion against an OpenAI-compatible endpoint.

    Blocking; callers run ``complete_sync`` through ``asyncio.to_thread``.
    The SDK's own retries are disabled: a failed call is simply a lost reply.
    """

    def __init__(
        self,
        *,
        client: Any,
        model: str,
        system_prompt: str = "",
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.system_prompt = (system_prompt or "").strip()
        self.extra_headers = dict(extra_headers or {})

    @classmethod
    def from_settings(cls, settings, *, system_prompt: str = "", model: str | None = None) -> "CompletionClient":
        client = OpenAI(
            api_key=settings.completion_api_key,
            base_url=settings.completion_base_url,
            timeout=settings.completion_timeout_seconds,
            max_retries=0,
        )
        headers = {"x-clawdbot-session-max-turns": "1"}
        if settings.agent_restrictions:
            headers["x-clawdbot-agent-restrictions"] = settings.agent_restrictions
        return cls(
            client=client,
            model=model or settings.completion_model,
            system_prompt=system_prompt,
            extra_headers=headers,
        )

    def build_messages(self, request: CompletionRequest) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": request.prompt_text})
        return messages

    def complete_sync(self, request: CompletionRequest) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": self.build_messages(request),
            "user": request.session_id,
            "max_tokens": int(request.max_tokens),
            "stream": False,
        }
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        try:
            resp = self.client.chat.completions.create(**kwargs)
        except Exception as e:
            raise CompletionError(
                f"completion call failed: {type(e).__name__}: {e}",
                status_code=getattr(e, "status_code", None),
                details=getattr(e, "body", None),
            ) from e

        choices = getattr(resp, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        return str(getattr(message, "content", None) or "")
