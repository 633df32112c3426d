"""
Text-to-speech endpoint.

  POST /api/tts -- MP3 audio for a response, in the model's voice

With conversation_id and round the request names a stored response: its
stored content is what gets read aloud (404 if there is none), and audio is
served from (and written to) the on-disk cache, so replaying a response
never pays for synthesis twice.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from ...llm.models import normalize_model_key
from ...security import ValidationError, validate_length, validate_not_empty, validate_round
from ...speech import TextToSpeech
from ...storage.models import ConversationResponse
from ...storage.store import ConversationStore
from ..middleware.rate_limit import check_rate_limit
from ..models.requests import TTSRequest

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_TEXT_LENGTH = 100_000


def _stored_response(
    store: ConversationStore, conversation_id: str, round_number: int, model: str
) -> ConversationResponse | None:
    """The persisted answer for the triple, under the key as sent or its catalogue key."""
    stored = store.get_response(conversation_id, round_number, model)
    if stored is None and normalize_model_key(model) != model:
        stored = store.get_response(conversation_id, round_number, normalize_model_key(model))
    return stored


@router.post("/tts")
async def speak(
    body: TTSRequest,
    request: Request,
    _rate: None = Depends(check_rate_limit),
) -> Response:
    try:
        text = validate_not_empty(body.text, "text")
        validate_length(text, "text", max_length=MAX_TEXT_LENGTH)
        model = validate_not_empty(body.model, "model")
        if body.round is not None:
            validate_round(body.round)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if body.conversation_id and body.round is not None:
        stored = _stored_response(request.app.state.store, body.conversation_id, body.round, model)
        if stored is None:
            raise HTTPException(status_code=404, detail="Response not found")
        text, model = stored.content, stored.model

    tts: TextToSpeech = request.app.state.tts
    try:
        audio = await tts.speak(
            text,
            model,
            conversation_id=body.conversation_id,
            round_number=body.round,
        )
    except Exception as e:
        logger.error(f"[TTSAPI] Synthesis failed for {model}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="TTS generation failed")

    return Response(content=audio, media_type="audio/mpeg")
