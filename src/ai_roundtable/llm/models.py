"""
Model catalogue -- the fixed set of roundtable participants.

Each participant has a short key (stored with every response), a display
name (used in prompts and exports), a provider and a provider model id.
Model ids can be overridden per key with ROUNDTABLE_MODEL_<KEY>, e.g.
ROUNDTABLE_MODEL_GEMINI=gemini-2.5-flash.
"""

import logging
import os
from dataclasses import dataclass, field

from ..config import DEFAULT_LLM_TIMEOUT
from .client import LLMClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelConfig:
    """A roundtable participant."""

    id: str
    name: str
    provider: str
    model_id: str


@dataclass
class SearchConfig:
    """How a participant's native web search is attached (Round 1 only)."""

    tools: list[str] = field(default_factory=list)
    provider_options: dict = field(default_factory=dict)

    @property
    def enabled(self) -> bool:
        return bool(self.tools or self.provider_options)


class UnknownModelError(ValueError):
    """Raised for a model key that is not in the catalogue."""

    pass


MODEL_CONFIGS: dict[str, ModelConfig] = {
    "claude": ModelConfig(id="claude", name="Claude", provider="anthropic", model_id="claude-sonnet-4-6"),
    "gpt": ModelConfig(id="gpt", name="GPT-4", provider="openai", model_id="gpt-4o"),
    "gemini": ModelConfig(id="gemini", name="Gemini", provider="google", model_id="gemini-2.5-pro"),
    "grok": ModelConfig(id="grok", name="Grok", provider="xai", model_id="grok-3"),
}

SEARCH_CONFIGS: dict[str, SearchConfig] = {
    "claude": SearchConfig(tools=["web_search"]),
    "gpt": SearchConfig(tools=["web_search"]),
    "gemini": SearchConfig(tools=["google_search"]),
    "grok": SearchConfig(provider_options={"mode": "auto", "return_citations": True}),
}

# Keys accepted on input and mapped to a catalogue key.
MODEL_ALIASES: dict[str, str] = {
    "gpt4": "gpt",
}


def normalize_model_key(key: str) -> str:
    """Catalogue key for a model key or alias; anything else is returned unchanged."""
    return MODEL_ALIASES.get(key, key)


def get_model_config(key: str) -> ModelConfig:
    key = normalize_model_key(key)
    config = MODEL_CONFIGS.get(key)
    if config is None:
        raise UnknownModelError(f"Unknown model: {key}")
    override = os.environ.get(f"ROUNDTABLE_MODEL_{key.upper()}", "").strip()
    if override:
        return ModelConfig(id=config.id, name=config.name, provider=config.provider, model_id=override)
    return config


def get_model_name(key: str) -> str:
    """Display name for a model key; unknown keys are shown as-is."""
    config = MODEL_CONFIGS.get(normalize_model_key(key))
    return config.name if config else key


def get_default_models() -> list[str]:
    return list(MODEL_CONFIGS)


def get_search_config(key: str) -> SearchConfig:
    """Web search setup for a model; empty for unknown keys."""
    return SEARCH_CONFIGS.get(normalize_model_key(key), SearchConfig())


def create_model_client(key: str, timeout: float = DEFAULT_LLM_TIMEOUT) -> LLMClient:
    """Build an LLMClient for a roundtable participant."""
    config = get_model_config(key)
    return LLMClient(provider=config.provider, model=config.model_id, timeout=timeout)
