"""
API Gateway -- FastAPI application factory.

Creates the FastAPI app with all routes, middleware, and dependencies.
This is the entrypoint for uvicorn:

    uvicorn ai_roundtable.api.gateway:create_app --factory --host 0.0.0.0 --port 8000

Or via the CLI:

    ai-roundtable serve --reload

Security:
  - Access gate (password cookie) in front of every /api route
  - CORS restricted to configured origins (default: localhost only)
  - Production auth check on startup
  - Rate limiting on provider-spending routes
  - All external input validated at boundary

Route logic lives in routes/.
"""

import functools
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..augmenter import Augmenter
from ..config import Settings
from ..llm.client import LLMClient
from ..llm.models import create_model_client
from ..orchestration.round_table import ClientFactory, RoundTable, RoundTableConfig
from ..speech import AudioCache, SpeechSynthesizer, TextToSpeech
from ..storage.store import ConversationStore
from .middleware.auth import AccessGateMiddleware, check_production_auth
from .routes import augment, auth, conversations, health
from .routes import tts as tts_routes

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    """First pydantic error as 'field: message'."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return f"{location}: {first.get('msg', 'invalid')}" if location else first.get("msg", "Invalid request")


def create_app(
    settings: Settings | None = None,
    store: ConversationStore | None = None,
    client_factory: ClientFactory | None = None,
    augmenter: Augmenter | None = None,
    tts: TextToSpeech | None = None,
    round_table_config: RoundTableConfig | None = None,
) -> FastAPI:
    """
    Application factory -- creates and configures the FastAPI app.

    Args:
        settings: Runtime settings (loaded from environment if None).
        store: Conversation store (SQLite under settings.data_dir if None).
        client_factory: Model key -> LLMClient (real provider SDKs if None).
        augmenter: Topic augmenter (Anthropic, settings.augmenter_model if None).
        tts: Speech synthesis with audio cache (OpenAI if None).
        round_table_config: Roundtable configuration (defaults if None).
    """
    settings = settings or Settings.from_env()
    check_production_auth()

    if store is None:
        store = ConversationStore(settings.db_path)
    if client_factory is None:
        client_factory = functools.partial(create_model_client, timeout=settings.llm_timeout)
    if augmenter is None:
        augmenter = Augmenter(
            LLMClient(provider="anthropic", model=settings.augmenter_model, timeout=settings.llm_timeout)
        )
    if tts is None:
        tts = TextToSpeech(
            SpeechSynthesizer(settings.tts_api_key, timeout=settings.llm_timeout),
            AudioCache(settings.audio_dir),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.tts.cache.wait_for_writes()
        logger.info("[Gateway] Pending audio writes flushed")

    application = FastAPI(
        title="AI Roundtable API",
        description="Two-round discussion across independent model providers",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Last added runs first: CORS must answer preflights before the gate
    application.add_middleware(AccessGateMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type"],
    )

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": _validation_message(exc)})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"[Gateway] Unhandled error on {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    application.state.settings = settings
    application.state.store = store
    application.state.round_table = RoundTable(
        store=store,
        client_factory=client_factory,
        config=round_table_config or RoundTableConfig(),
    )
    application.state.augmenter = augmenter
    application.state.tts = tts
    application.state.start_time = time.time()

    application.include_router(health.router, tags=["Health"])
    application.include_router(auth.router, prefix="/api", tags=["Auth"])
    application.include_router(augment.router, prefix="/api", tags=["Augment"])
    application.include_router(conversations.router, prefix="/api", tags=["Conversations"])
    application.include_router(tts_routes.router, prefix="/api", tags=["Speech"])

    logger.info(f"[Gateway] API gateway initialized (data dir: {settings.data_dir})")
    return application
