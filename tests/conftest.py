"""Test fixtures -- fake provider clients, temp store, clean environment."""

import json
from unittest.mock import AsyncMock

import pytest

from ai_roundtable.api.middleware.rate_limit import reset_rate_limits
from ai_roundtable.llm.client import LLMResponse, ProviderError, Source, StreamEvent
from ai_roundtable.llm.models import get_default_models
from ai_roundtable.storage import Conversation, ConversationStore

ENV_VARS = (
    "ROUNDTABLE_ACCESS_PASSWORD",
    "AUTH_DISABLED",
    "ENV",
    "ENVIRONMENT",
    "RATE_LIMIT_PER_MINUTE",
    "ROUNDTABLE_MODEL_CLAUDE",
    "ROUNDTABLE_MODEL_GPT",
    "ROUNDTABLE_MODEL_GEMINI",
    "ROUNDTABLE_MODEL_GROK",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """No test sees the developer's keys, password or production flag."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_rate_limits()
    yield
    reset_rate_limits()


class FakeLLM:
    """Stands in for LLMClient: records prompts, answers without a network."""

    def __init__(self, key: str, fail: bool = False, sources: list[Source] | None = None):
        self.key = key
        self.fail = fail
        self.sources = sources or []
        self.calls: list[tuple[str, dict]] = []

    def answer(self, prompt: str) -> str:
        return f"{self.key} thinks carefully. Answer number {len(self.calls)}."

    async def call(self, prompt, **kwargs) -> LLMResponse:
        self.calls.append((prompt, kwargs))
        if self.fail:
            raise ProviderError("fake", self.key, "upstream exploded")
        return LLMResponse(content=self.answer(prompt), sources=list(self.sources))

    async def stream(self, prompt, **kwargs):
        self.calls.append((prompt, kwargs))
        if self.fail:
            raise ProviderError("fake", self.key, "upstream exploded")
        content = self.answer(prompt)
        for word in content.split(" "):
            yield StreamEvent(delta=word + " ")
        yield StreamEvent(response=LLMResponse(content=content, sources=list(self.sources)))


class FakeClientFactory:
    """model key -> FakeLLM, reused across calls so tests can inspect them."""

    def __init__(self, failing: tuple[str, ...] = ()):
        self.clients = {
            key: FakeLLM(key, fail=key in failing) for key in get_default_models()
        }

    def __call__(self, key: str) -> FakeLLM:
        return self.clients[key]

    @property
    def total_calls(self) -> int:
        return sum(len(c.calls) for c in self.clients.values())


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def store(tmp_path):
    return ConversationStore(tmp_path / "conversations.db")


@pytest.fixture
def conversation(store):
    return store.create_conversation(
        Conversation(
            raw_input="Will fusion power be commercial by 2040?",
            augmented_prompt="Will fusion be commercial by 2040? Consider first and second order effects.",
            topic_type="prediction",
            framework="scenario analysis",
            models=get_default_models(),
        )
    )


AUGMENT_REPLY = json.dumps({
    "topic_type": "prediction",
    "framework": "scenario analysis",
    "augmented_prompt": "Will fusion be commercial by 2040? Map the likely scenarios.",
})


@pytest.fixture
def mock_llm():
    """Mock LLM client for the augmenter, returning a valid classification."""
    client = AsyncMock()
    client.call.return_value = LLMResponse(content=AUGMENT_REPLY)
    return client
