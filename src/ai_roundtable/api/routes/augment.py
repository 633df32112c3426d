"""
Topic augmentation endpoint.

  POST /api/augment -- Classify a raw topic and rewrite it for the roundtable

Security:
  - Input size validation
  - Rate limiting (one provider call per request)
  - User input wrapped in delimiters by the Augmenter
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ...augmenter import AugmentationError, Augmenter
from ...llm.client import ProviderError
from ...security import ValidationError, validate_length, validate_not_empty
from ..middleware.rate_limit import check_rate_limit
from ..models.requests import AugmentRequest
from ..models.responses import AugmentResponse, MultiAugmentResponse

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_RAW_INPUT_LENGTH = 10_000


@router.post("/augment", response_model=AugmentResponse | MultiAugmentResponse)
async def augment(
    body: AugmentRequest,
    request: Request,
    _rate: None = Depends(check_rate_limit),
) -> AugmentResponse | MultiAugmentResponse:
    """
    Classify the topic into one of five types and rewrite it with that
    type's framework. With all_types, return a framing for every type.
    """
    try:
        raw_input = validate_not_empty(body.raw_input, "raw_input")
        validate_length(raw_input, "raw_input", max_length=MAX_RAW_INPUT_LENGTH)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    augmenter: Augmenter = request.app.state.augmenter
    try:
        if body.all_types:
            multi = await augmenter.augment_all(raw_input)
            return MultiAugmentResponse(raw_input=raw_input, **multi.to_dict())
        result = await augmenter.augment(raw_input)
    except AugmentationError as e:
        logger.error(f"[AugmentAPI] Unparseable augmenter reply: {e}")
        raise HTTPException(status_code=500, detail="Failed to parse augmentation")
    except ProviderError as e:
        logger.error(f"[AugmentAPI] Augmenter call failed: {e}")
        raise HTTPException(status_code=502, detail="Augmentation provider failed")

    return AugmentResponse(raw_input=raw_input, **result.to_dict())
