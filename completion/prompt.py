from __future__ import annotations

from admission.models import MentionEvent

RELATED_TEXT_CHARS = 400
MENTION_TEXT_CHARS = 1200


def _clip(text: str, limit: int) -> str:
    clean = " ".join((text or "").split())
    if len(clean) > limit:
        return clean[: limit - 3] + "..."
    return clean


def build_prompt_text(event: MentionEvent) -> str:
    lines: list[str] = []
    if event.related_events:
        lines.append("Context:")
        for related in event.related_events:
            who = related.author_id or "unknown"
            lines.append(f"[{related.relation_kind}] @{who}: {_clip(related.text, RELATED_TEXT_CHARS)}")
        lines.append("")
    who = event.author_name or event.author_id
    lines.append(f"Mention from @{who}:")
    lines.append(_clip(event.text, MENTION_TEXT_CHARS))
    return "\n".join(lines)
