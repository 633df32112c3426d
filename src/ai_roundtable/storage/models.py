"""Data models for persisted conversations and their per-round responses."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..llm.client import Source


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ConversationResponse:
    """One model's answer in one round. Created once, never updated."""

    conversation_id: str
    round: int
    model: str
    content: str
    sources: list[Source] | None = None
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "round": self.round,
            "model": self.model,
            "content": self.content,
            "sources": [s.to_dict() for s in self.sources] if self.sources else None,
        }


@dataclass
class Conversation:
    """A roundtable topic, its augmentation, and the participating models."""

    augmented_prompt: str
    models: list[str]
    raw_input: str = ""
    topic_type: str = "open_question"
    framework: str = "multiple_angles"
    id: str = field(default_factory=_new_id)
    created_at: str = field(default_factory=_now)
    responses: list[ConversationResponse] = field(default_factory=list)

    def round_responses(self, round_number: int) -> list[ConversationResponse]:
        return [r for r in self.responses if r.round == round_number]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "raw_input": self.raw_input,
            "augmented_prompt": self.augmented_prompt,
            "topic_type": self.topic_type,
            "framework": self.framework,
            "models": list(self.models),
            "responses": [r.to_dict() for r in self.responses],
        }


@dataclass
class ConversationSummary:
    """Listing row for the history view."""

    id: str
    created_at: str
    raw_input: str
    topic_type: str
