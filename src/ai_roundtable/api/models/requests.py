"""
Pydantic request models -- the API contract for clients.

Required text fields default to "" so that a missing field and an empty one
are rejected by the same boundary validators with the same 400 message.
"""

from pydantic import BaseModel, Field


# =============================================================================
# ACCESS GATE
# =============================================================================


class AuthRequest(BaseModel):
    """Exchange the shared password for the access cookie."""

    password: str = Field("", description="The access password")


# =============================================================================
# AUGMENTATION
# =============================================================================


class AugmentRequest(BaseModel):
    """Classify and rewrite a raw topic."""

    raw_input: str = Field("", description="The user's topic or question")
    all_types: bool = Field(
        False, description="Return a framing for every topic type, not just the best one"
    )


# =============================================================================
# CONVERSATIONS
# =============================================================================


class CreateConversationRequest(BaseModel):
    """Create a conversation from an (already augmented) prompt."""

    raw_input: str = Field("", description="The original topic as typed")
    augmented_prompt: str = Field("", description="The prompt every model answers")
    topic_type: str = Field("open_question")
    framework: str = Field("multiple_angles")
    models: list[str] = Field(default_factory=list, description="Model keys, in display order")


class RespondRequest(BaseModel):
    """Run one model for one round."""

    conversation_id: str = Field("")
    model: str = Field("")
    round: int = Field(..., description="1 (independent) or 2 (reaction)")
    essay_mode: bool = Field(True, description="Attach the essay-style system prompt")


class RoundRequest(BaseModel):
    """Run every model of a conversation (or a subset) for one round."""

    conversation_id: str = Field("")
    round: int = Field(..., description="1 (independent) or 2 (reaction)")
    models: list[str] | None = Field(
        None, description="Subset of the conversation's models (None = all)"
    )
    essay_mode: bool = Field(True)


class StreamRequest(BaseModel):
    """Stream one or both rounds as server-sent events."""

    conversation_id: str = Field("")
    rounds: list[int] = Field(default_factory=lambda: [1, 2])
    essay_mode: bool = Field(True)


# =============================================================================
# SPEECH
# =============================================================================


class TTSRequest(BaseModel):
    """Speak a response. conversation_id + round enable the audio cache."""

    text: str = Field("")
    model: str = Field("")
    conversation_id: str | None = None
    round: int | None = None
