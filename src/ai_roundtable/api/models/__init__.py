"""Pydantic models for API request/response contracts."""
from .requests import (
    AugmentRequest,
    AuthRequest,
    CreateConversationRequest,
    RespondRequest,
    RoundRequest,
    StreamRequest,
    TTSRequest,
)
from .responses import (
    AugmentationOption,
    AugmentResponse,
    AuthResponse,
    ConversationDetail,
    ConversationResponseInfo,
    ConversationSummaryInfo,
    CreateConversationResponse,
    HealthResponse,
    ModelResultResponse,
    MultiAugmentResponse,
    RoundResultResponse,
    SourceInfo,
)
