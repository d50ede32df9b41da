from __future__ import annotations

import time
from typing import Any

from admission.models import EventValidationError
from admission.models import MentionEvent
from admission.models import RelatedEvent

# Upstream field -> relation kind for embedded tweets.
EMBEDDED_RELATIONS = (
    ("quoted_tweet", "quoted"),
    ("retweeted_tweet", "retweeted"),
    ("replied_to_tweet", "replied_to"),
)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _author_fields(raw: dict[str, Any]) -> tuple[str, str | None]:
    author = raw.get("author")
    if isinstance(author, dict):
        author_id = _text(author.get("id"))
        author_name = _text(author.get("userName") or author.get("username") or author.get("name")) or None
        return (author_id, author_name)
    return (_text(raw.get("authorId") or raw.get("author_id")), None)


def _parse_related(raw: dict[str, Any]) -> tuple[RelatedEvent, ...]:
    out: list[RelatedEvent] = []
    explicit = raw.get("relatedEvents") or raw.get("related_events")
    if isinstance(explicit, list):
        for item in explicit:
            if not isinstance(item, dict):
                continue
            kind = _text(item.get("relationKind") or item.get("relation_kind")) or "related"
            author_id = _text(item.get("authorId") or item.get("author_id"))
            out.append(RelatedEvent(relation_kind=kind, author_id=author_id, text=_text(item.get("text"))))

    for field_name, kind in EMBEDDED_RELATIONS:
        embedded = raw.get(field_name)
        if not isinstance(embedded, dict):
            continue
        author_id, _name = _author_fields(embedded)
        text = _text(embedded.get("text"))
        if not text and not author_id:
            continue
        out.append(RelatedEvent(relation_kind=kind, author_id=author_id, text=text))
    return tuple(out)


def parse_mention(raw: Any, *, received_at: float | None = None) -> MentionEvent:
    if not isinstance(raw, dict):
        raise EventValidationError("mention payload must be an object")

    event_id = _text(raw.get("id"))
    if not event_id:
        raise EventValidationError("mention is missing id")
    author_id, author_name = _author_fields(raw)
    if not author_id:
        raise EventValidationError(f"mention {event_id} is missing author id")

    conversation_id = _text(raw.get("conversationId") or raw.get("conversation_id")) or event_id
    return MentionEvent(
        id=event_id,
        author_id=author_id,
        text=_text(raw.get("text")),
        conversation_id=conversation_id,
        related_events=_parse_related(raw),
        author_name=author_name,
        received_at=time.time() if received_at is None else float(received_at),
    )


def extract_mentions(payload: Any) -> list[Any]:
    """Raw tweet records from a webhook body, or [] for other event types."""
    if not isinstance(payload, dict):
        return []
    if payload.get("event_type") != "tweet":
        return []
    tweets = payload.get("tweets")
    if not isinstance(tweets, list):
        return []
    return list(tweets)
