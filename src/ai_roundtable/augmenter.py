"""
Topic Augmenter -- classify a raw topic and rewrite it for the roundtable.

One LLM call classifies the user's input into one of five topic types and
rewrites it with that type's analytical framework. augment_all() asks for
all five framings at once, with one of them marked "recommended".

The reply must be JSON, optionally wrapped in a markdown fence. There is
exactly one call and one parse: anything unparseable raises
AugmentationError.
"""

import json
import logging
import re
from dataclasses import dataclass

from .llm.client import LLMClient
from .security.prompt_guard import detect_injection_attempt, wrap_user_content

logger = logging.getLogger(__name__)

TOPIC_TYPES = (
    "prediction",
    "opinion",
    "comparison",
    "trend_analysis",
    "open_question",
)

FRAMEWORKS = {
    "prediction": "scenario analysis, 1st/2nd order effects",
    "opinion": "steel man vs straw man",
    "comparison": "strongest case for each side",
    "trend_analysis": "timeline framing, recent context",
    "open_question": "multiple angles, trade-offs",
}

SINGLE_MAX_TOKENS = 500
MULTI_MAX_TOKENS = 2000

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


class AugmentationError(ValueError):
    """The augmenter reply was not the JSON payload we asked for."""

    pass


@dataclass
class AugmenterResult:
    topic_type: str
    framework: str
    augmented_prompt: str

    def to_dict(self) -> dict:
        return {
            "topic_type": self.topic_type,
            "framework": self.framework,
            "augmented_prompt": self.augmented_prompt,
        }


@dataclass
class AugmentationEntry:
    framework: str
    augmented_prompt: str


@dataclass
class MultiAugmenterResult:
    recommended: str
    augmentations: dict[str, AugmentationEntry]

    def to_dict(self) -> dict:
        return {
            "recommended": self.recommended,
            "augmentations": {
                t: {"framework": e.framework, "augmented_prompt": e.augmented_prompt}
                for t, e in self.augmentations.items()
            },
        }


def _framework_lines() -> str:
    return "\n".join(f"- {t} → {FRAMEWORKS[t]}" for t in TOPIC_TYPES)


PRINCIPLES = """Principles:
- Add structure and depth, not fluff
- Keep the augmented prompt concise
- Preserve the user's nuance and framing
- Don't over-constrain with too many sub-questions"""


def build_augmenter_prompt(raw_input: str) -> str:
    """Prompt asking for a single topic classification and rewrite."""
    return f"""You are a prompt augmenter. Given a user's raw topic or question, classify it into exactly one topic type and rewrite it using that type's analytical framework.

Topic types and their frameworks:
{_framework_lines()}

Add at most 1-2 sentences of analytical framing.

{PRINCIPLES}

Respond with ONLY a JSON object (no markdown, no explanation):
{{
  "topic_type": "one of: {', '.join(TOPIC_TYPES)}",
  "framework": "brief framework name",
  "augmented_prompt": "rewritten prompt"
}}

{wrap_user_content(raw_input)}"""


def build_multi_augmenter_prompt(raw_input: str) -> str:
    """Prompt asking for a rewrite under every topic type, plus a recommendation."""
    entries = ",\n".join(
        f'    "{t}": {{ "framework": "brief framework name", "augmented_prompt": "rewritten prompt" }}'
        for t in TOPIC_TYPES
    )
    return f"""You are a prompt augmenter. Given a user's raw topic or question, you must generate an augmented prompt for EACH of the 5 topic types below, using the appropriate analytical framework for each.

Topic types and their frameworks:
{_framework_lines()}

For each type, rewrite the user's input to fit that analytical framing. Add at most 1-2 sentences of analytical framing per type. Some framings may fit the input better than others; do your best for each.

{PRINCIPLES}

Also pick which topic_type best fits the input as "recommended".

Respond with ONLY a JSON object (no markdown, no explanation):
{{
  "recommended": "one of: {', '.join(TOPIC_TYPES)}",
  "augmentations": {{
{entries}
  }}
}}

{wrap_user_content(raw_input)}"""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ``` or ```json fence, if present."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
        cleaned = _FENCE_CLOSE.sub("", cleaned, count=1)
    return cleaned.strip()


def _load_json_object(text: str) -> dict:
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise AugmentationError(f"Augmenter returned invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise AugmentationError("Augmenter returned JSON that is not an object")
    return data


def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise AugmentationError(f"Augmenter reply is missing '{key}'")
    return value.strip()


def _require_topic_type(value: str) -> str:
    if value not in TOPIC_TYPES:
        raise AugmentationError(f"Augmenter returned unknown topic type '{value}'")
    return value


def parse_augmenter_response(text: str) -> AugmenterResult:
    data = _load_json_object(text)
    return AugmenterResult(
        topic_type=_require_topic_type(_require_str(data, "topic_type")),
        framework=_require_str(data, "framework"),
        augmented_prompt=_require_str(data, "augmented_prompt"),
    )


def parse_multi_augmenter_response(text: str) -> MultiAugmenterResult:
    data = _load_json_object(text)
    recommended = _require_topic_type(_require_str(data, "recommended"))
    raw_entries = data.get("augmentations")
    if not isinstance(raw_entries, dict):
        raise AugmentationError("Augmenter reply is missing 'augmentations'")

    augmentations = {}
    for topic_type in TOPIC_TYPES:
        entry = raw_entries.get(topic_type)
        if not isinstance(entry, dict):
            raise AugmentationError(f"Augmenter reply is missing the '{topic_type}' framing")
        augmentations[topic_type] = AugmentationEntry(
            framework=_require_str(entry, "framework"),
            augmented_prompt=_require_str(entry, "augmented_prompt"),
        )
    return MultiAugmenterResult(recommended=recommended, augmentations=augmentations)


class Augmenter:
    """
    Runs the augmentation call.

    Usage:
        augmenter = Augmenter(LLMClient(provider="anthropic", model=settings.augmenter_model))
        result = await augmenter.augment("Future of software")
        result.topic_type, result.augmented_prompt
    """

    def __init__(self, llm: LLMClient):
        self._llm = llm

    async def augment(self, raw_input: str) -> AugmenterResult:
        detect_injection_attempt(raw_input)
        response = await self._llm.call(
            build_augmenter_prompt(raw_input), temperature=0.3, max_tokens=SINGLE_MAX_TOKENS
        )
        result = parse_augmenter_response(response.content)
        logger.info(f"[Augmenter] Classified topic as {result.topic_type}")
        return result

    async def augment_all(self, raw_input: str) -> MultiAugmenterResult:
        detect_injection_attempt(raw_input)
        response = await self._llm.call(
            build_multi_augmenter_prompt(raw_input), temperature=0.3, max_tokens=MULTI_MAX_TOKENS
        )
        result = parse_multi_augmenter_response(response.content)
        logger.info(f"[Augmenter] Built all framings, recommended {result.recommended}")
        return result
