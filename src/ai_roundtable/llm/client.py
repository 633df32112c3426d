"""
Provider-agnostic LLM client with web-search sources, streaming and token tracking.

Features:
  - One call()/stream() surface over Anthropic, OpenAI, Google Gemini and xAI
  - Optional provider-native web search, with URL citations returned as Sources
  - Token tracking per call and per client
  - Timeout enforcement (SDK-level); no automatic retries
  - Security: prompt sanitization, size limits, no secrets or prompt bodies in logs

xAI exposes an OpenAI-compatible API, so it is driven through the OpenAI SDK.

Usage:
    client = LLMClient(provider="anthropic", model="claude-sonnet-4-6")
    response = await client.call("Will fusion be commercial by 2040?", web_search=True)
    response.content   # str
    response.sources   # list[Source]

    async for event in client.stream(prompt, system=system_prompt):
        if event.response is None:
            print(event.delta, end="")
"""

import logging
import time
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from typing import Any

import anthropic
import httpx
import openai
from google import genai
from google.genai import types as genai_types

from ..config import DEFAULT_LLM_TIMEOUT, get_provider_api_key
from ..security.prompt_guard import sanitize_for_prompt

logger = logging.getLogger(__name__)

DEFAULT_MAX_PROMPT_LENGTH = 200_000
DEFAULT_MAX_TOKENS = 4096
XAI_BASE_URL = "https://api.x.ai/v1"
ANTHROPIC_WEB_SEARCH_MAX_USES = 5
CONNECT_TIMEOUT = 10.0

SUPPORTED_PROVIDERS = ("anthropic", "openai", "google", "xai")


# =============================================================================
# DATA MODELS
# =============================================================================


@dataclass
class Source:
    """A web citation returned alongside a model's answer."""

    url: str
    title: str = ""

    def to_dict(self) -> dict:
        return {"url": self.url, "title": self.title}


@dataclass
class TokenUsage:
    """Token usage tracking for a single LLM call."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        self.total_tokens = self.input_tokens + self.output_tokens


@dataclass
class LLMResponse:
    """Complete response from an LLM call."""

    content: str
    sources: list[Source] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    provider: str = ""
    latency_ms: float = 0.0


@dataclass
class StreamEvent:
    """One step of a streamed call: a text delta, or the final response."""

    delta: str = ""
    response: LLMResponse | None = None


class ProviderError(RuntimeError):
    """An upstream provider call failed. Reported per model, never retried."""

    def __init__(self, provider: str, model: str, message: str):
        super().__init__(f"{provider}/{model}: {message}")
        self.provider = provider
        self.model = model


def dedupe_sources(sources: Iterable[Source]) -> list[Source]:
    """Keep URL sources only, de-duplicated by URL (first title wins)."""
    seen: set[str] = set()
    unique = []
    for source in sources:
        if not source.url or source.url in seen:
            continue
        seen.add(source.url)
        unique.append(source)
    return unique


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """
    Provider-agnostic LLM client.

    The SDK client is created on first use, so an app can be built (and
    tested) without every provider key configured.
    """

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_LLM_TIMEOUT,
        max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH,
    ):
        self._provider = provider.lower()
        if self._provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported provider: {provider}")
        self._model = model
        self._api_key = api_key if api_key is not None else get_provider_api_key(self._provider)
        self._timeout = timeout
        self._max_prompt_length = max_prompt_length
        self._client: Any = None
        self._total_usage = TokenUsage()

        if not self._api_key:
            logger.warning(f"[LLM] No API key for {self._provider} -- calls will fail")
        logger.debug(
            f"[LLM] Configured {self._provider} client "
            f"(model={self._model}, timeout={self._timeout}s)"
        )

    def _http_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self._timeout, connect=min(CONNECT_TIMEOUT, self._timeout))

    def _get_client(self) -> Any:
        """Build the provider SDK client on first use."""
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ProviderError(self._provider, self._model, "API key not configured")

        if self._provider == "anthropic":
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key, timeout=self._http_timeout()
            )
        elif self._provider == "openai":
            self._client = openai.AsyncOpenAI(
                api_key=self._api_key, timeout=self._http_timeout()
            )
        elif self._provider == "xai":
            self._client = openai.AsyncOpenAI(
                api_key=self._api_key, base_url=XAI_BASE_URL, timeout=self._http_timeout()
            )
        elif self._provider == "google":
            self._client = genai.Client(
                api_key=self._api_key,
                http_options=genai_types.HttpOptions(timeout=int(self._timeout * 1000)),
            )
        return self._client

    async def call(
        self,
        prompt: str,
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        web_search: bool = False,
    ) -> LLMResponse:
        """
        Make a single buffered LLM call.

        Args:
            prompt: The user message.
            system: Optional system instruction.
            temperature: Sampling temperature.
            max_tokens: Maximum output tokens.
            web_search: Attach the provider's native web-search tool.

        Returns:
            LLMResponse with .content, .sources and .usage

        Raises:
            ProviderError: if the provider call fails for any reason.
        """
        prompt, system = self._sanitize(prompt, system)
        start = time.time()
        try:
            client = self._get_client()
            if self._provider == "anthropic":
                response = await self._call_anthropic(
                    client, prompt, system, temperature, max_tokens, web_search
                )
            elif self._provider == "openai":
                response = await self._call_openai(
                    client, prompt, system, temperature, max_tokens, web_search
                )
            elif self._provider == "xai":
                response = await self._call_xai(
                    client, prompt, system, temperature, max_tokens, web_search
                )
            else:
                response = await self._call_google(
                    client, prompt, system, temperature, max_tokens, web_search
                )
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"[LLM] {self._provider}/{self._model} call failed: {type(e).__name__}: {e}")
            raise ProviderError(self._provider, self._model, f"{type(e).__name__}: {e}") from e

        response.latency_ms = (time.time() - start) * 1000
        self._track_usage(response.usage)
        logger.debug(
            f"[LLM] {self._provider}/{self._model}: "
            f"{response.usage.input_tokens}in + {response.usage.output_tokens}out, "
            f"{len(response.sources)} sources ({response.latency_ms:.0f}ms)"
        )
        return response

    async def stream(
        self,
        prompt: str,
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        web_search: bool = False,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream an LLM call as text deltas.

        Yields StreamEvent(delta=...) as tokens arrive, then exactly one
        StreamEvent(response=LLMResponse) carrying the full text and sources.

        Raises:
            ProviderError: if the provider call fails (possibly mid-stream).
        """
        prompt, system = self._sanitize(prompt, system)
        start = time.time()
        try:
            client = self._get_client()
            if self._provider == "anthropic":
                events = self._stream_anthropic(
                    client, prompt, system, temperature, max_tokens, web_search
                )
            elif self._provider == "openai":
                events = self._stream_openai(
                    client, prompt, system, temperature, max_tokens, web_search
                )
            elif self._provider == "xai":
                events = self._stream_xai(
                    client, prompt, system, temperature, max_tokens, web_search
                )
            else:
                events = self._stream_google(
                    client, prompt, system, temperature, max_tokens, web_search
                )

            async for event in events:
                if event.response is not None:
                    event.response.latency_ms = (time.time() - start) * 1000
                    self._track_usage(event.response.usage)
                yield event
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"[LLM] {self._provider}/{self._model} stream failed: {type(e).__name__}: {e}")
            raise ProviderError(self._provider, self._model, f"{type(e).__name__}: {e}") from e

    def _sanitize(self, prompt: str, system: str | None) -> tuple[str, str | None]:
        """Enforce size limits and strip null bytes."""
        prompt = sanitize_for_prompt(prompt, max_length=self._max_prompt_length)
        if system:
            system = sanitize_for_prompt(system, max_length=self._max_prompt_length)
        return prompt, system or None

    # -------------------------------------------------------------------------
    # Anthropic
    # -------------------------------------------------------------------------

    def _anthropic_kwargs(self, prompt, system, temperature, max_tokens, web_search) -> dict:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        if web_search:
            kwargs["tools"] = [{
                "type": "web_search_20250305",
                "name": "web_search",
                "max_uses": ANTHROPIC_WEB_SEARCH_MAX_USES,
            }]
        return kwargs

    def _anthropic_response(self, message: Any) -> LLMResponse:
        """Join text blocks; collect search results and text citations as sources."""
        texts = []
        sources = []
        for block in message.content:
            block_type = getattr(block, "type", "")
            if block_type == "text":
                texts.append(block.text)
                for citation in getattr(block, "citations", None) or []:
                    url = getattr(citation, "url", None)
                    if url:
                        sources.append(Source(url=url, title=getattr(citation, "title", "") or ""))
            elif block_type == "web_search_tool_result":
                results = getattr(block, "content", None)
                if isinstance(results, list):
                    for result in results:
                        url = getattr(result, "url", None)
                        if url:
                            sources.append(Source(url=url, title=getattr(result, "title", "") or ""))

        usage = getattr(message, "usage", None)
        return LLMResponse(
            content="".join(texts),
            sources=dedupe_sources(sources),
            usage=TokenUsage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
            ),
            model=self._model,
            provider="anthropic",
        )

    async def _call_anthropic(self, client, prompt, system, temperature, max_tokens, web_search):
        message = await client.messages.create(
            **self._anthropic_kwargs(prompt, system, temperature, max_tokens, web_search)
        )
        return self._anthropic_response(message)

    async def _stream_anthropic(self, client, prompt, system, temperature, max_tokens, web_search):
        kwargs = self._anthropic_kwargs(prompt, system, temperature, max_tokens, web_search)
        async with client.messages.stream(**kwargs) as stream:
            async for text in stream.text_stream:
                yield StreamEvent(delta=text)
            message = await stream.get_final_message()
        yield StreamEvent(response=self._anthropic_response(message))

    # -------------------------------------------------------------------------
    # OpenAI (Responses API -- the web search tool lives there)
    # -------------------------------------------------------------------------

    def _openai_kwargs(self, prompt, system, temperature, max_tokens, web_search) -> dict:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "input": prompt,
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if system:
            kwargs["instructions"] = system
        if web_search:
            kwargs["tools"] = [{"type": "web_search_preview"}]
        return kwargs

    def _openai_response(self, response: Any) -> LLMResponse:
        sources = []
        for item in getattr(response, "output", None) or []:
            if getattr(item, "type", "") != "message":
                continue
            for part in getattr(item, "content", None) or []:
                for annotation in getattr(part, "annotations", None) or []:
                    if getattr(annotation, "type", "") == "url_citation":
                        sources.append(Source(
                            url=annotation.url, title=getattr(annotation, "title", "") or ""
                        ))

        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=getattr(response, "output_text", "") or "",
            sources=dedupe_sources(sources),
            usage=TokenUsage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
            ),
            model=self._model,
            provider="openai",
        )

    async def _call_openai(self, client, prompt, system, temperature, max_tokens, web_search):
        response = await client.responses.create(
            **self._openai_kwargs(prompt, system, temperature, max_tokens, web_search)
        )
        return self._openai_response(response)

    async def _stream_openai(self, client, prompt, system, temperature, max_tokens, web_search):
        kwargs = self._openai_kwargs(prompt, system, temperature, max_tokens, web_search)
        stream = await client.responses.create(stream=True, **kwargs)
        final = None
        async for event in stream:
            event_type = getattr(event, "type", "")
            if event_type == "response.output_text.delta":
                yield StreamEvent(delta=event.delta)
            elif event_type == "response.completed":
                final = event.response
            elif event_type in ("response.failed", "error"):
                raise ProviderError("openai", self._model, f"stream reported {event_type}")
        if final is None:
            raise ProviderError("openai", self._model, "stream ended without a completed response")
        yield StreamEvent(response=self._openai_response(final))

    # -------------------------------------------------------------------------
    # xAI (OpenAI-compatible chat completions with live search)
    # -------------------------------------------------------------------------

    def _xai_kwargs(self, prompt, system, temperature, max_tokens, web_search) -> dict:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if web_search:
            kwargs["extra_body"] = {
                "search_parameters": {"mode": "auto", "return_citations": True}
            }
        return kwargs

    @staticmethod
    def _xai_citations(payload: Any) -> list[Source]:
        citations = getattr(payload, "citations", None) or []
        return [Source(url=c) for c in citations if isinstance(c, str)]

    async def _call_xai(self, client, prompt, system, temperature, max_tokens, web_search):
        response = await client.chat.completions.create(
            **self._xai_kwargs(prompt, system, temperature, max_tokens, web_search)
        )
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=response.choices[0].message.content or "",
            sources=dedupe_sources(self._xai_citations(response)),
            usage=TokenUsage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=self._model,
            provider="xai",
        )

    async def _stream_xai(self, client, prompt, system, temperature, max_tokens, web_search):
        kwargs = self._xai_kwargs(prompt, system, temperature, max_tokens, web_search)
        stream = await client.chat.completions.create(
            stream=True, stream_options={"include_usage": True}, **kwargs
        )
        parts = []
        sources: list[Source] = []
        usage = None
        async for chunk in stream:
            sources.extend(self._xai_citations(chunk))
            if getattr(chunk, "usage", None):
                usage = chunk.usage
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                parts.append(delta)
                yield StreamEvent(delta=delta)
        yield StreamEvent(response=LLMResponse(
            content="".join(parts),
            sources=dedupe_sources(sources),
            usage=TokenUsage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=self._model,
            provider="xai",
        ))

    # -------------------------------------------------------------------------
    # Google Gemini (google-genai, grounding via the google_search tool)
    # -------------------------------------------------------------------------

    def _google_config(self, system, temperature, max_tokens, web_search):
        return genai_types.GenerateContentConfig(
            system_instruction=system,
            temperature=temperature,
            max_output_tokens=max_tokens,
            tools=(
                [genai_types.Tool(google_search=genai_types.GoogleSearch())]
                if web_search
                else None
            ),
        )

    @staticmethod
    def _google_sources(response: Any) -> list[Source]:
        sources = []
        for candidate in getattr(response, "candidates", None) or []:
            metadata = getattr(candidate, "grounding_metadata", None)
            for chunk in getattr(metadata, "grounding_chunks", None) or []:
                web = getattr(chunk, "web", None)
                if web is not None and getattr(web, "uri", None):
                    sources.append(Source(url=web.uri, title=getattr(web, "title", "") or ""))
        return sources

    @staticmethod
    def _google_usage(response: Any) -> TokenUsage:
        metadata = getattr(response, "usage_metadata", None)
        return TokenUsage(
            input_tokens=getattr(metadata, "prompt_token_count", 0) or 0,
            output_tokens=getattr(metadata, "candidates_token_count", 0) or 0,
        )

    async def _call_google(self, client, prompt, system, temperature, max_tokens, web_search):
        response = await client.aio.models.generate_content(
            model=self._model,
            contents=prompt,
            config=self._google_config(system, temperature, max_tokens, web_search),
        )
        return LLMResponse(
            content=response.text or "",
            sources=dedupe_sources(self._google_sources(response)),
            usage=self._google_usage(response),
            model=self._model,
            provider="google",
        )

    async def _stream_google(self, client, prompt, system, temperature, max_tokens, web_search):
        stream = await client.aio.models.generate_content_stream(
            model=self._model,
            contents=prompt,
            config=self._google_config(system, temperature, max_tokens, web_search),
        )
        parts = []
        sources: list[Source] = []
        usage = TokenUsage()
        async for chunk in stream:
            sources.extend(self._google_sources(chunk))
            if getattr(chunk, "usage_metadata", None):
                usage = self._google_usage(chunk)
            if chunk.text:
                parts.append(chunk.text)
                yield StreamEvent(delta=chunk.text)
        yield StreamEvent(response=LLMResponse(
            content="".join(parts),
            sources=dedupe_sources(sources),
            usage=usage,
            model=self._model,
            provider="google",
        ))

    # -------------------------------------------------------------------------

    def _track_usage(self, usage: TokenUsage) -> None:
        """Accumulate usage stats across calls."""
        self._total_usage.input_tokens += usage.input_tokens
        self._total_usage.output_tokens += usage.output_tokens
        self._total_usage.total_tokens += usage.total_tokens

    @property
    def total_usage(self) -> TokenUsage:
        """Cumulative token usage across all calls in this client's lifetime."""
        return self._total_usage

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def model(self) -> str:
        return self._model
