"""
Runtime configuration loaded from environment variables.

Values are read when Settings.from_env() is called, not at import time, so
tests can monkeypatch the environment before building an app.

    ROUNDTABLE_DATA_DIR         Directory for conversations.db and the audio cache (default: data)
    ROUNDTABLE_ACCESS_PASSWORD  Shared secret for the access gate
    ROUNDTABLE_TTS_API_KEY      OpenAI key for speech (default: OPENAI_API_KEY)
    ROUNDTABLE_AUGMENTER_MODEL  Anthropic model used to classify topics
    CORS_ORIGINS                Comma-separated allowed origins
    RATE_LIMIT_PER_MINUTE       Per-IP limit on credit-spending routes (default: 60)
    LLM_TIMEOUT                 Provider request timeout in seconds (default: 120)
    ENV                         "production" makes the access password mandatory
    AUTH_DISABLED               "true" opens the gate even in production
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path("data")
DEFAULT_AUGMENTER_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_LLM_TIMEOUT = 120.0
DEFAULT_RATE_LIMIT = 60

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
]

PROVIDER_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "xai": "XAI_API_KEY",
}


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        logger.warning(f"[Config] {name} is not a number, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        logger.warning(f"[Config] {name} is not an integer, using {default}")
        return default


def get_provider_api_key(provider: str) -> str:
    """API key for a provider, or "" if it is not configured."""
    env_var = PROVIDER_KEY_ENV.get(provider, "")
    return os.environ.get(env_var, "").strip() if env_var else ""


def get_cors_origins() -> list[str]:
    """Load CORS origins from environment or use safe defaults."""
    origins_env = os.environ.get("CORS_ORIGINS", "")
    if origins_env.strip():
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return list(DEFAULT_CORS_ORIGINS)


def is_production() -> bool:
    env = os.environ.get("ENV", os.environ.get("ENVIRONMENT", "development"))
    return env.lower() in ("production", "prod", "staging")


@dataclass
class Settings:
    """Process-wide settings for the API gateway and CLI."""

    data_dir: Path = DEFAULT_DATA_DIR
    augmenter_model: str = DEFAULT_AUGMENTER_MODEL
    tts_api_key: str = ""
    llm_timeout: float = DEFAULT_LLM_TIMEOUT
    rate_limit_per_minute: int = DEFAULT_RATE_LIMIT
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    @property
    def db_path(self) -> Path:
        return self.data_dir / "conversations.db"

    @property
    def audio_dir(self) -> Path:
        return self.data_dir / "audio"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            data_dir=Path(os.environ.get("ROUNDTABLE_DATA_DIR", "").strip() or DEFAULT_DATA_DIR),
            augmenter_model=(
                os.environ.get("ROUNDTABLE_AUGMENTER_MODEL", "").strip()
                or DEFAULT_AUGMENTER_MODEL
            ),
            tts_api_key=(
                os.environ.get("ROUNDTABLE_TTS_API_KEY", "").strip()
                or get_provider_api_key("openai")
            ),
            llm_timeout=_env_float("LLM_TIMEOUT", DEFAULT_LLM_TIMEOUT),
            rate_limit_per_minute=_env_int("RATE_LIMIT_PER_MINUTE", DEFAULT_RATE_LIMIT),
            cors_origins=get_cors_origins(),
        )
