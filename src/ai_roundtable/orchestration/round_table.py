"""
Roundtable Protocol - Two-round broadcast across independent model providers.

Round 1: INDEPENDENT -- every selected model answers the augmented prompt in
         parallel (web search attached when enabled)
Round 2: REACTION    -- every model sees its own Round-1 answer and all the
         others' answers, and reacts; again in parallel

Key properties:
- Separate calls: each model gets its own provider call and writes its own
  response row under a fresh id, so tasks never contend
- Partial failure is expected: a failing model is reported in its own
  `error` field and never aborts the round
- No retries, no cancellation: once issued, a model's call runs to completion
  even if the stream consumer has gone away
- At most one response per (conversation, round, model): an existing one is
  returned instead of calling the provider again

Two delivery modes:
    result = await rt.run_round(conversation, 1)          # buffered
    async for event in rt.stream_conversation(conversation):  # server-push
        yield event.to_sse()
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field, replace

from ..llm.client import LLMClient, LLMResponse, Source
from ..llm.models import create_model_client, get_model_config, get_model_name, get_search_config
from ..storage.models import Conversation, ConversationResponse
from ..storage.store import ConversationStore, DuplicateResponseError
from .prompts import Round1Response, build_round1_prompt, build_round2_prompt, build_system_prompt

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], LLMClient]


# =============================================================================
# DATA MODELS
# =============================================================================


@dataclass
class ModelResult:
    """One model's outcome in one round: content and sources, or an error."""

    model: str
    model_name: str
    round: int
    provider: str = ""
    model_id: str = ""
    content: str = ""
    sources: list[Source] = field(default_factory=list)
    error: str | None = None
    existing: bool = False  # Served from the store, provider not called

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "model": self.model,
            "model_name": self.model_name,
            "round": self.round,
            "provider": self.provider,
            "model_id": self.model_id,
            "content": self.content,
            "sources": [s.to_dict() for s in self.sources],
            "error": self.error,
        }


@dataclass
class RoundResult:
    """Aggregate of one round across all selected models."""

    conversation_id: str
    round: int
    results: list[ModelResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def failed(self) -> list[ModelResult]:
        return [r for r in self.results if not r.ok]


@dataclass
class RoundEvent:
    """A server-push event: round_start, token, response, error, round_complete, done."""

    event: str
    data: dict

    def to_sse(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data, default=str)}\n\n"


class RoundPreconditionError(ValueError):
    """A round cannot start yet (e.g. Round 2 before any Round-1 response exists)."""

    pass


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class RoundTableConfig:
    """Configuration for a roundtable run."""

    web_search: bool = True  # Round 1 only
    essay_mode: bool = True  # Attach the essay-style system prompt
    temperature: float = 0.7
    max_tokens: int = 4096


# =============================================================================
# ROUND TABLE
# =============================================================================


class RoundTable:
    """
    Two-round broadcaster over the model catalogue.

    Usage:
        rt = RoundTable(store=store, config=RoundTableConfig())
        r1 = await rt.run_round(conversation, 1)
        r2 = await rt.run_round(conversation, 2)
        for result in r2.results:
            print(result.model_name, result.error or result.content[:80])
    """

    def __init__(
        self,
        store: ConversationStore,
        client_factory: ClientFactory = create_model_client,
        config: RoundTableConfig | None = None,
    ):
        self.store = store
        self.config = config or RoundTableConfig()
        self._client_factory = client_factory
        self._running: set[asyncio.Task] = set()

    def with_config(self, **overrides) -> "RoundTable":
        """A RoundTable sharing this one's store, clients and running tasks, with config overrides."""
        if all(getattr(self.config, k) == v for k, v in overrides.items()):
            return self
        clone = RoundTable(self.store, self._client_factory, replace(self.config, **overrides))
        clone._running = self._running
        return clone

    # -------------------------------------------------------------------------
    # Buffered
    # -------------------------------------------------------------------------

    async def respond(
        self, conversation: Conversation, model: str, round_number: int
    ) -> ModelResult:
        """Run one model for one round (buffered). Provider failure is in .error."""
        get_model_config(model)
        round1 = self._load_round1(conversation) if round_number == 2 else []
        return await self._respond_one(conversation, model, round_number, round1)

    async def run_round(
        self,
        conversation: Conversation,
        round_number: int,
        models: list[str] | None = None,
    ) -> RoundResult:
        """Run every selected model concurrently and persist what succeeds."""
        start = time.time()
        keys = self._select_models(conversation, models)
        round1 = self._load_round1(conversation) if round_number == 2 else []

        logger.info(
            f"[RoundTable] Round {round_number} for {conversation.id}: {len(keys)} models"
        )
        outcomes = await asyncio.gather(
            *[self._respond_one(conversation, key, round_number, round1) for key in keys],
            return_exceptions=True,
        )

        results = []
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"[RoundTable] {key} round {round_number} crashed: {outcome}")
                results.append(self._error_result(key, round_number, outcome))
            else:
                results.append(outcome)

        result = RoundResult(
            conversation_id=conversation.id,
            round=round_number,
            results=results,
            duration_seconds=time.time() - start,
        )
        logger.info(
            f"[RoundTable] Round {round_number} complete: "
            f"{len(results) - len(result.failed)}/{len(results)} ok, "
            f"{result.duration_seconds:.1f}s"
        )
        return result

    async def _respond_one(
        self,
        conversation: Conversation,
        model: str,
        round_number: int,
        round1: list[Round1Response],
    ) -> ModelResult:
        existing = self.store.get_response(conversation.id, round_number, model)
        if existing is not None:
            return self._existing_result(existing)

        try:
            client = self._client_factory(model)
            response = await client.call(
                self._build_prompt(conversation, model, round_number, round1),
                **self._request_options(model, round_number),
            )
        except Exception as e:
            logger.error(f"[RoundTable] {model} round {round_number} failed: {e}")
            return self._error_result(model, round_number, e)

        return self._persist(conversation, model, round_number, response)

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def stream_round(
        self,
        conversation: Conversation,
        round_number: int,
        models: list[str] | None = None,
    ) -> AsyncIterator[RoundEvent]:
        """
        Stream one round. Token events from different models interleave;
        clients key updates by (round, model).
        """
        keys = self._select_models(conversation, models)
        round1 = self._load_round1(conversation) if round_number == 2 else []

        yield RoundEvent("round_start", {"round": round_number, "models": keys})

        queue: asyncio.Queue[RoundEvent | None] = asyncio.Queue()
        for key in keys:
            task = asyncio.create_task(
                self._stream_one(conversation, key, round_number, round1, queue)
            )
            self._running.add(task)
            task.add_done_callback(self._running.discard)

        remaining = len(keys)
        while remaining:
            event = await queue.get()
            if event is None:
                remaining -= 1
                continue
            yield event

        yield RoundEvent("round_complete", {"round": round_number})

    async def stream_conversation(
        self,
        conversation: Conversation,
        rounds: tuple[int, ...] = (1, 2),
    ) -> AsyncIterator[RoundEvent]:
        """Stream the requested rounds in order, then a final done event."""
        for round_number in rounds:
            try:
                async for event in self.stream_round(conversation, round_number):
                    yield event
            except RoundPreconditionError as e:
                logger.warning(f"[RoundTable] Round {round_number} skipped: {e}")
                yield RoundEvent("error", {"round": round_number, "message": str(e)})
                break
        yield RoundEvent("done", {"conversation_id": conversation.id})

    async def _stream_one(
        self,
        conversation: Conversation,
        model: str,
        round_number: int,
        round1: list[Round1Response],
        queue: "asyncio.Queue[RoundEvent | None]",
    ) -> None:
        """Producer for one model: tokens, then exactly one response or error, then a sentinel."""
        try:
            existing = self.store.get_response(conversation.id, round_number, model)
            if existing is not None:
                result = self._existing_result(existing)
            else:
                client = self._client_factory(model)
                final: LLMResponse | None = None
                async for chunk in client.stream(
                    self._build_prompt(conversation, model, round_number, round1),
                    **self._request_options(model, round_number),
                ):
                    if chunk.response is not None:
                        final = chunk.response
                    elif chunk.delta:
                        queue.put_nowait(RoundEvent("token", {
                            "round": round_number,
                            "model": model,
                            "content": chunk.delta,
                        }))
                if final is None:
                    raise RuntimeError("stream ended without a final response")
                result = self._persist(conversation, model, round_number, final)

            queue.put_nowait(RoundEvent("response", result.to_dict()))
        except Exception as e:
            logger.error(f"[RoundTable] {model} round {round_number} stream failed: {e}")
            queue.put_nowait(RoundEvent("error", {
                "round": round_number,
                "model": model,
                "message": str(e),
            }))
        finally:
            queue.put_nowait(None)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _select_models(self, conversation: Conversation, models: list[str] | None) -> list[str]:
        keys = list(models) if models else list(conversation.models)
        for key in keys:
            get_model_config(key)
        return keys

    def _load_round1(self, conversation: Conversation) -> list[Round1Response]:
        """Round-1 answers keyed by display name, for Round-2 prompts."""
        rows = self.store.get_round_responses(conversation.id, 1)
        if not rows:
            raise RoundPreconditionError(
                f"Round 1 has no responses for conversation {conversation.id}"
            )
        order = {m: i for i, m in enumerate(conversation.models)}
        rows.sort(key=lambda r: order.get(r.model, len(order)))
        return [
            Round1Response(model=self._display_name(r.model), content=r.content)
            for r in rows
        ]

    def _build_prompt(
        self,
        conversation: Conversation,
        model: str,
        round_number: int,
        round1: list[Round1Response],
    ) -> str:
        if round_number == 1:
            return build_round1_prompt(conversation.augmented_prompt)
        return build_round2_prompt(
            conversation.augmented_prompt, self._display_name(model), round1
        )

    def _request_options(self, model: str, round_number: int) -> dict:
        return {
            "system": build_system_prompt(round_number) if self.config.essay_mode else None,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "web_search": (
                round_number == 1
                and self.config.web_search
                and get_search_config(model).enabled
            ),
        }

    def _persist(
        self,
        conversation: Conversation,
        model: str,
        round_number: int,
        response: LLMResponse,
    ) -> ModelResult:
        record = ConversationResponse(
            conversation_id=conversation.id,
            round=round_number,
            model=model,
            content=response.content,
            sources=response.sources or None,
        )
        try:
            self.store.add_response(record)
        except DuplicateResponseError:
            # Same triple stored concurrently by another request
            existing = self.store.get_response(conversation.id, round_number, model)
            if existing is not None:
                return self._existing_result(existing)
            raise

        config = get_model_config(model)
        return ModelResult(
            model=model,
            model_name=config.name,
            round=round_number,
            provider=config.provider,
            model_id=config.model_id,
            content=response.content,
            sources=list(response.sources),
        )

    @staticmethod
    def _display_name(model: str) -> str:
        return get_model_name(model)

    @staticmethod
    def _existing_result(existing: ConversationResponse) -> ModelResult:
        config = get_model_config(existing.model)
        return ModelResult(
            model=existing.model,
            model_name=config.name,
            round=existing.round,
            provider=config.provider,
            model_id=config.model_id,
            content=existing.content,
            sources=list(existing.sources or []),
            existing=True,
        )

    @staticmethod
    def _error_result(model: str, round_number: int, error: BaseException) -> ModelResult:
        config = get_model_config(model)
        return ModelResult(
            model=model,
            model_name=config.name,
            round=round_number,
            provider=config.provider,
            model_id=config.model_id,
            error=str(error) or type(error).__name__,
        )
