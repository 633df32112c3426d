"""
Access gate endpoints.

  POST   /api/auth  -- Exchange the password for the access cookie
  DELETE /api/auth  -- Clear the cookie (log out)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from ...config import is_production
from ..middleware.auth import COOKIE_MAX_AGE, COOKIE_NAME, generate_token, verify_password
from ..middleware.rate_limit import check_rate_limit
from ..models.requests import AuthRequest
from ..models.responses import AuthResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/auth", response_model=AuthResponse)
async def login(
    body: AuthRequest,
    request: Request,
    response: Response,
    _rate: None = Depends(check_rate_limit),
) -> AuthResponse:
    if not body.password:
        raise HTTPException(status_code=400, detail="Password is required")

    if not verify_password(body.password):
        client_host = request.client.host if request.client else "unknown"
        logger.warning(f"[Auth] Invalid password from {client_host}")
        raise HTTPException(status_code=401, detail="Invalid password")

    response.set_cookie(
        key=COOKIE_NAME,
        value=generate_token(),
        max_age=COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        secure=is_production(),
        samesite="lax",
    )
    return AuthResponse(ok=True)


@router.delete("/auth", response_model=AuthResponse)
async def logout(response: Response) -> AuthResponse:
    response.delete_cookie(key=COOKIE_NAME, path="/")
    return AuthResponse(ok=True)
