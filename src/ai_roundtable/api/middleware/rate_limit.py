"""
Rate limiting -- caps provider-credit spending from any single client.

In-memory sliding window counter per client IP, applied as a route
dependency on augment, conversation rounds and TTS. A single-process limiter:
with multiple replicas each keeps its own window.

Configuration via environment (read into Settings):
  RATE_LIMIT_PER_MINUTE=60  (default: 60 requests per minute per IP)
"""

import logging
import time
from collections import defaultdict

from fastapi import HTTPException, Request

from ...config import DEFAULT_RATE_LIMIT

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0

_request_log: dict[str, list[float]] = defaultdict(list)


def _get_rate_limit(request: Request) -> int:
    settings = getattr(request.app.state, "settings", None)
    return settings.rate_limit_per_minute if settings else DEFAULT_RATE_LIMIT


def _cleanup_old_entries(window_seconds: float = WINDOW_SECONDS) -> None:
    """Remove request timestamps older than the window; clients with none left are forgotten."""
    cutoff = time.time() - window_seconds
    for client_id in list(_request_log):
        recent = [ts for ts in _request_log[client_id] if ts > cutoff]
        if recent:
            _request_log[client_id] = recent
        else:
            del _request_log[client_id]


def reset_rate_limits() -> None:
    """Forget every client's window (tests, and after a config reload)."""
    _request_log.clear()


async def check_rate_limit(request: Request) -> None:
    """
    Check if the client has exceeded the rate limit.

    Use as a dependency on routes that call a provider.
    Raises HTTP 429 if the limit is exceeded.
    """
    client_ip = request.client.host if request.client else "unknown"
    limit = _get_rate_limit(request)

    _cleanup_old_entries()

    if len(_request_log[client_ip]) >= limit:
        logger.warning(f"[RateLimit] Client {client_ip} exceeded {limit}/min")
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded ({limit} requests per minute)",
            headers={"Retry-After": "60"},
        )

    _request_log[client_ip].append(time.time())
