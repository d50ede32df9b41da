from __future__ import annotations

from dataclasses import dataclass, field

from config.defaults import REPLY_TASK_TYPE


class EventValidationError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class RelatedEvent:
    relation_kind: str
    author_id: str
    text: str


@dataclass(frozen=True, slots=True)
class MentionEvent:
    id: str
    author_id: str
    text: str
    conversation_id: str = ""
    related_events: tuple[RelatedEvent, ...] = field(default_factory=tuple)
    author_name: str | None = None
    received_at: float | None = None

    def __post_init__(self) -> None:
        if not self.conversation_id:
            object.__setattr__(self, "conversation_id", self.id)


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    session_id: str
    prompt_text: str
    max_tokens: int


@dataclass(frozen=True, slots=True)
class ReplyTask:
    conversation_id: str
    parent_event_id: str
    content: str
    type: str = REPLY_TASK_TYPE
