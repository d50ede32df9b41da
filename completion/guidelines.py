from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from config.defaults import REPLY_SOFT_CHARS


@dataclass(slots=True)
class ReplyGuidelines:
    version: str = "reply_guidelines_v1"
    persona: str = ""
    voice_constraints: list[str] = field(default_factory=list)
    disallowed_moves: list[str] = field(default_factory=list)
    max_chars_hint: int | None = None

    def to_prompt_block(self) -> str:
        lines: list[str] = []
        if self.persona:
            lines.append(self.persona)
        if self.voice_constraints:
            lines.append("Voice:")
            for item in self.voice_constraints:
                lines.append(f"- {item}")
        if self.disallowed_moves:
            lines.append("Never:")
            for item in self.disallowed_moves:
                lines.append(f"- {item}")
        if self.max_chars_hint:
            lines.append(f"Reply in a single line of at most {int(self.max_chars_hint)} characters.")
        return "\n".join(lines)


def default_reply_guidelines(max_chars_hint: int = REPLY_SOFT_CHARS) -> ReplyGuidelines:
    return ReplyGuidelines(
        persona="You reply to people who mention this account on social media.",
        voice_constraints=[
            "Friendly, direct, and specific to what the person said.",
            "Answer in the language of the mention.",
        ],
        disallowed_moves=[
            "No financial, legal, or medical advice.",
            "No links, hashtags, or @-mentions of other accounts.",
        ],
        max_chars_hint=int(max_chars_hint),
    )


def _as_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item or "").strip()]


def load_reply_guidelines(
    path: str | Path | None,
    *,
    max_chars_hint: int = REPLY_SOFT_CHARS,
) -> tuple[ReplyGuidelines, str | None]:
    """
    Returns (guidelines, warning_message). warning_message is None on clean load.

    max_chars_hint is the length replies are actually cut to; a file value may
    only tighten it.
    """
    defaults = default_reply_guidelines(max_chars_hint)
    if not path:
        return (defaults, "Reply guidelines path missing; using built-in defaults.")

    p = Path(path)
    if not p.exists():
        return (defaults, f"Reply guidelines file not found at {p}; using built-in defaults.")

    try:
        payload = yaml.safe_load(p.read_text(encoding="utf-8"))
    except Exception as exc:
        return (defaults, f"Failed to read reply guidelines from {p}: {exc}; using built-in defaults.")

    if not isinstance(payload, dict):
        return (defaults, f"Invalid reply guidelines format in {p}; using built-in defaults.")

    max_chars_raw = payload.get("max_chars_hint")
    try:
        file_hint = int(max_chars_raw) if max_chars_raw is not None else defaults.max_chars_hint
    except (TypeError, ValueError):
        file_hint = defaults.max_chars_hint
    if file_hint <= 0:
        file_hint = defaults.max_chars_hint

    guidelines = ReplyGuidelines(
        version=str(payload.get("version") or defaults.version),
        persona=str(payload.get("persona") or "").strip() or defaults.persona,
        voice_constraints=_as_list(payload.get("voice_constraints")) or defaults.voice_constraints,
        disallowed_moves=_as_list(payload.get("disallowed_moves")) or defaults.disallowed_moves,
        max_chars_hint=min(int(file_hint), int(max_chars_hint)),
    )
    return (guidelines, None)
