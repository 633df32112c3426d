"""
Pydantic response models -- what the API returns.
"""

from pydantic import BaseModel, Field


class AuthResponse(BaseModel):
    ok: bool = True


# =============================================================================
# AUGMENTATION
# =============================================================================


class AugmentResponse(BaseModel):
    """Single best classification and rewrite."""

    raw_input: str
    topic_type: str
    framework: str
    augmented_prompt: str


class AugmentationOption(BaseModel):
    framework: str
    augmented_prompt: str


class MultiAugmentResponse(BaseModel):
    """One framing per topic type, with the recommended one named."""

    raw_input: str
    recommended: str
    augmentations: dict[str, AugmentationOption] = Field(default_factory=dict)


# =============================================================================
# CONVERSATIONS
# =============================================================================


class SourceInfo(BaseModel):
    url: str
    title: str = ""


class CreateConversationResponse(BaseModel):
    conversation_id: str


class ModelResultResponse(BaseModel):
    """One model's outcome in one round."""

    model: str
    model_name: str
    round: int
    provider: str = ""
    model_id: str = ""
    content: str = ""
    sources: list[SourceInfo] = Field(default_factory=list)
    error: str | None = None


class RoundResultResponse(BaseModel):
    """Aggregate of one buffered round."""

    conversation_id: str
    round: int
    results: list[ModelResultResponse] = Field(default_factory=list)
    duration_seconds: float = 0.0


class ConversationResponseInfo(BaseModel):
    id: str
    conversation_id: str
    round: int
    model: str
    content: str
    sources: list[SourceInfo] | None = None


class ConversationDetail(BaseModel):
    """A conversation with every stored response."""

    id: str
    created_at: str
    raw_input: str
    augmented_prompt: str
    topic_type: str
    framework: str
    models: list[str] = Field(default_factory=list)
    responses: list[ConversationResponseInfo] = Field(default_factory=list)


class ConversationSummaryInfo(BaseModel):
    id: str
    created_at: str
    raw_input: str
    topic_type: str


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    """Liveness probe."""

    status: str = "healthy"
    models: list[str] = Field(default_factory=list)
    uptime_seconds: float = 0.0
