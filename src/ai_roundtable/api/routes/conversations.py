"""
Conversation API -- create a roundtable, run its rounds, read it back.

  POST   /api/conversation                    -- Create a conversation
  POST   /api/conversation/respond            -- One model, one round (buffered)
  POST   /api/conversation/round              -- All models, one round (buffered)
  POST   /api/conversation/stream             -- Rounds 1 and/or 2 as SSE
  GET    /api/conversations                   -- Newest conversations
  GET    /api/conversations/{id}              -- Full conversation with responses
  DELETE /api/conversations/{id}              -- Delete a conversation
  GET    /api/conversations/{id}/export       -- markdown | text | thread

Security:
  - Input size validation
  - Rate limiting on every route that calls a provider
  - Model keys checked against the catalogue before any call
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse

from ...augmenter import TOPIC_TYPES
from ...export import export_markdown, export_text, export_thread
from ...llm.models import MODEL_CONFIGS, UnknownModelError, get_model_config, normalize_model_key
from ...orchestration.round_table import RoundPreconditionError, RoundTable
from ...security import (
    ValidationError,
    validate_in_choices,
    validate_length,
    validate_list_size,
    validate_not_empty,
    validate_round,
)
from ...storage.models import Conversation
from ...storage.store import ConversationStore
from ..middleware.rate_limit import check_rate_limit
from ..models.requests import CreateConversationRequest, RespondRequest, RoundRequest, StreamRequest
from ..models.responses import (
    ConversationDetail,
    ConversationSummaryInfo,
    CreateConversationResponse,
    ModelResultResponse,
    RoundResultResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_PROMPT_LENGTH = 100_000
EXPORT_FORMATS = ("markdown", "text", "thread")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# =============================================================================
# HELPERS
# =============================================================================


def _store(request: Request) -> ConversationStore:
    return request.app.state.store


def _round_table(request: Request, essay_mode: bool) -> RoundTable:
    return request.app.state.round_table.with_config(essay_mode=essay_mode)


def _load_conversation(request: Request, conversation_id: str) -> Conversation:
    conversation = _store(request).get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def _validate_models(models: list[str], field_name: str = "models") -> list[str]:
    """Known model keys (aliases normalized), no repeats. Raises ValidationError / UnknownModelError."""
    validate_list_size(models, field_name, min_items=1, max_items=len(MODEL_CONFIGS))
    models = [normalize_model_key(key) for key in models]
    if len(set(models)) != len(models):
        raise ValidationError(f"{field_name} must not repeat a model")
    for key in models:
        get_model_config(key)
    return models


# =============================================================================
# CREATE / RUN
# =============================================================================


@router.post("/conversation", response_model=CreateConversationResponse)
async def create_conversation(
    body: CreateConversationRequest,
    request: Request,
) -> CreateConversationResponse:
    try:
        augmented_prompt = validate_not_empty(body.augmented_prompt, "augmented_prompt")
        validate_length(augmented_prompt, "augmented_prompt", max_length=MAX_PROMPT_LENGTH)
        validate_length(body.raw_input, "raw_input", max_length=MAX_PROMPT_LENGTH)
        validate_in_choices(body.topic_type, TOPIC_TYPES, "topic_type")
        models = _validate_models(body.models)
    except (ValidationError, UnknownModelError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    conversation = _store(request).create_conversation(
        Conversation(
            augmented_prompt=augmented_prompt,
            models=models,
            raw_input=body.raw_input.strip(),
            topic_type=body.topic_type,
            framework=body.framework,
        )
    )
    return CreateConversationResponse(conversation_id=conversation.id)


@router.post("/conversation/respond", response_model=ModelResultResponse)
async def respond(
    body: RespondRequest,
    request: Request,
    _rate: None = Depends(check_rate_limit),
) -> ModelResultResponse:
    """
    Run one model for one round and persist its answer. An answer already
    stored for (conversation, round, model) is returned without a new call.
    """
    try:
        conversation_id = validate_not_empty(body.conversation_id, "conversation_id")
        model = normalize_model_key(validate_not_empty(body.model, "model"))
        round_number = validate_round(body.round)
        get_model_config(model)
    except (ValidationError, UnknownModelError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    conversation = _load_conversation(request, conversation_id)
    try:
        result = await _round_table(request, body.essay_mode).respond(
            conversation, model, round_number
        )
    except RoundPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.ok:
        raise HTTPException(status_code=502, detail=f"{result.model_name} failed: {result.error}")
    return ModelResultResponse(**result.to_dict())


@router.post("/conversation/round", response_model=RoundResultResponse)
async def run_round(
    body: RoundRequest,
    request: Request,
    _rate: None = Depends(check_rate_limit),
) -> RoundResultResponse:
    """
    Run a whole round concurrently. Failing models are reported in their
    own error field; the rest of the round is unaffected.
    """
    try:
        conversation_id = validate_not_empty(body.conversation_id, "conversation_id")
        round_number = validate_round(body.round)
        models = _validate_models(body.models) if body.models is not None else None
    except (ValidationError, UnknownModelError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    conversation = _load_conversation(request, conversation_id)
    try:
        result = await _round_table(request, body.essay_mode).run_round(
            conversation, round_number, models
        )
    except (RoundPreconditionError, UnknownModelError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return RoundResultResponse(
        conversation_id=result.conversation_id,
        round=result.round,
        results=[ModelResultResponse(**r.to_dict()) for r in result.results],
        duration_seconds=round(result.duration_seconds, 2),
    )


@router.post("/conversation/stream")
async def stream_conversation(
    body: StreamRequest,
    request: Request,
    _rate: None = Depends(check_rate_limit),
) -> StreamingResponse:
    """
    Stream the requested rounds as Server-Sent Events.

    Events:
      round_start    -- {round, models}
      token          -- {round, model, content} (interleaved across models)
      response       -- one model's final result, persisted
      error          -- {round, model, message} for a failed model, or
                        {round, message} when a round cannot start
      round_complete -- {round}
      done           -- {conversation_id}
    """
    try:
        conversation_id = validate_not_empty(body.conversation_id, "conversation_id")
        validate_list_size(body.rounds, "rounds", min_items=1, max_items=2)
        rounds = tuple(sorted({validate_round(r) for r in body.rounds}))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    conversation = _load_conversation(request, conversation_id)
    if rounds == (2,) and not _store(request).get_round_responses(conversation.id, 1):
        raise HTTPException(status_code=400, detail="Round 1 has no responses yet")

    round_table = _round_table(request, body.essay_mode)
    logger.info(f"[ConversationAPI] Streaming rounds {rounds} for {conversation.id}")

    async def event_generator():
        async for event in round_table.stream_conversation(conversation, rounds):
            yield event.to_sse()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# =============================================================================
# HISTORY
# =============================================================================


@router.get("/conversations", response_model=list[ConversationSummaryInfo])
async def list_conversations(request: Request) -> list[ConversationSummaryInfo]:
    return [
        ConversationSummaryInfo(
            id=s.id, created_at=s.created_at, raw_input=s.raw_input, topic_type=s.topic_type
        )
        for s in _store(request).list_conversations()
    ]


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(conversation_id: str, request: Request) -> ConversationDetail:
    return ConversationDetail(**_load_conversation(request, conversation_id).to_dict())


@router.delete("/conversations/{conversation_id}", status_code=204)
async def delete_conversation(conversation_id: str, request: Request) -> Response:
    if not _store(request).delete_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    logger.info(f"[ConversationAPI] Deleted {conversation_id}")
    return Response(status_code=204)


@router.get("/conversations/{conversation_id}/export")
async def export_conversation(
    conversation_id: str,
    request: Request,
    format: str = Query("markdown", description="markdown | text | thread"),
):
    try:
        validate_in_choices(format, EXPORT_FORMATS, "format")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    conversation = _load_conversation(request, conversation_id)
    if format == "thread":
        return {"posts": export_thread(conversation)}
    if format == "text":
        return PlainTextResponse(export_text(conversation))
    return PlainTextResponse(export_markdown(conversation), media_type="text/markdown")
