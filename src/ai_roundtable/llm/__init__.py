"""
LLM Client -- Provider-agnostic wrapper over Anthropic, OpenAI, Google and xAI.

Handles web-search sources, streaming, token tracking and prompt sanitization.

Usage:
    from .llm import create_model_client

    client = create_model_client("claude")
    response = await client.call(prompt="Who wins the AI race?", web_search=True)
    print(response.content, response.sources)
"""

from .client import LLMClient, LLMResponse, ProviderError, Source, StreamEvent, TokenUsage, dedupe_sources
from .models import (
    MODEL_ALIASES,
    MODEL_CONFIGS,
    ModelConfig,
    SearchConfig,
    UnknownModelError,
    create_model_client,
    get_default_models,
    get_model_config,
    get_model_name,
    get_search_config,
    normalize_model_key,
)
