"""
Access gate -- one shared password, exchanged for an HMAC-derived cookie.

Usage:
    Set ROUNDTABLE_ACCESS_PASSWORD in .env
    POST /api/auth {"password": "..."}  -> sets the roundtable-auth cookie

Security:
    - The cookie holds HMAC-SHA256(password) under a fixed key, never the password.
    - Password and token comparisons use constant-time hmac.compare_digest.
    - An empty or unset password never verifies: no input matches a missing secret.
    - In production (ENV=production) the password is REQUIRED. Startup FAILS
      without it unless AUTH_DISABLED=true is set explicitly.
    - Without a password (any ENV) the gate stays closed: nothing verifies,
      so /api/ calls get 401 and pages redirect. Only AUTH_DISABLED=true opens it.

The gate is a perimeter check: unauthenticated /api/ calls get 401 JSON,
any other path (page loads such as /docs) is redirected to /login.
"""

import hashlib
import hmac
import logging
import os

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ...config import is_production

logger = logging.getLogger(__name__)

COOKIE_NAME = "roundtable-auth"
COOKIE_MAX_AGE = 30 * 24 * 60 * 60  # 30 days
TOKEN_KEY = b"roundtable-auth-key"
LOGIN_PATH = "/login"

PUBLIC_PATHS = ("/api/auth", LOGIN_PATH, "/health", "/openapi.json")


def get_password() -> str:
    """Load the access password from environment ("" if unset)."""
    return os.environ.get("ROUNDTABLE_ACCESS_PASSWORD", "")


def _auth_explicitly_disabled() -> bool:
    """Check if auth is explicitly disabled (not just missing)."""
    return os.environ.get("AUTH_DISABLED", "").lower() in ("true", "1", "yes")


def gate_enabled() -> bool:
    """The gate is enforced unless AUTH_DISABLED=true; a missing password keeps it closed."""
    return not _auth_explicitly_disabled()


def check_production_auth() -> None:
    """
    Call on startup to verify the gate is configured in production.

    In production mode:
      - RAISES RuntimeError if ROUNDTABLE_ACCESS_PASSWORD is not set
      - Unless AUTH_DISABLED=true is explicitly set (opt-in, logged as warning)
    In development mode:
      - Logs a warning if no password is set; startup continues with every
        gated route locked
    """
    if _auth_explicitly_disabled():
        logger.warning(
            "[Auth] AUTH_DISABLED=true. All endpoints are unauthenticated."
        )
        return
    if get_password():
        return
    if is_production():
        raise RuntimeError(
            "ROUNDTABLE_ACCESS_PASSWORD is required in production mode. "
            "To explicitly disable the access gate, set AUTH_DISABLED=true "
            "(not recommended for production)."
        )
    logger.warning(
        "[Auth] No ROUNDTABLE_ACCESS_PASSWORD set (dev mode). Gated routes will reject "
        "every request; set a password or AUTH_DISABLED=true."
    )


def generate_token(password: str | None = None) -> str:
    """HMAC-SHA256 of the password, hex encoded (64 chars)."""
    secret = get_password() if password is None else password
    return hmac.new(TOKEN_KEY, secret.encode(), hashlib.sha256).hexdigest()


def verify_password(candidate: str | None) -> bool:
    """Constant-time password check. Rejects empty input and an unset password."""
    password = get_password()
    if not password or not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), password.encode())


def verify_token(token: str | None) -> bool:
    """Constant-time cookie check. Rejects empty tokens and an unset password."""
    password = get_password()
    if not password or not token:
        return False
    return hmac.compare_digest(token.encode(), generate_token(password).encode())


def _is_public(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in PUBLIC_PATHS)


class AccessGateMiddleware(BaseHTTPMiddleware):
    """Intercepts every request and enforces the cookie when the gate is enabled."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not gate_enabled() or _is_public(path):
            return await call_next(request)

        if verify_token(request.cookies.get(COOKIE_NAME)):
            return await call_next(request)

        client_host = request.client.host if request.client else "unknown"
        if path.startswith("/api/"):
            logger.warning(f"[Auth] Unauthenticated API call to {path} from {client_host}")
            return JSONResponse({"detail": "Unauthorized"}, status_code=401)

        logger.debug(f"[Auth] Redirecting {path} to {LOGIN_PATH}")
        return RedirectResponse(url=LOGIN_PATH, status_code=307)
