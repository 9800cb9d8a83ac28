"""JWT validation middleware.

This Starlette middleware runs before any route handler. It:
1. Extracts the Bearer token from the Authorization header
2. Validates the token via the OIDC module
3. Injects the validated claims into request.state

Routes that need authentication use ``get_current_user`` from
dependencies.py. This middleware only makes the raw claims available.

Missing or invalid tokens are not rejected here because some routes
(health, docs) are public. The dependency enforces authentication at the
route level.
"""

from __future__ import annotations

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from goal_tracker.auth.oidc import TokenValidationError, validate_token
from goal_tracker.config import get_settings

log = structlog.get_logger(__name__)

# Routes that are always public - skip token extraction entirely
_PUBLIC_PREFIXES = (
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
)


class AuthMiddleware(BaseHTTPMiddleware):
    """Extract and validate the JWT, inject its claims into request.state.

    On success: request.state.auth_claims is set to the claims dict.
    On failure or missing token: request.state.auth_claims is None.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.auth_claims = None

        if any(request.url.path.startswith(prefix) for prefix in _PUBLIC_PREFIXES):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            # No auth header - pass through (dependency will reject if needed)
            return await call_next(request)

        token = auth_header.removeprefix("Bearer ").strip()
        try:
            claims = await validate_token(token, get_settings())
            request.state.auth_claims = claims
            log.debug("auth.token_validated", sub=claims.get("sub"))
        except TokenValidationError as exc:
            log.warning("auth.token_invalid", error=str(exc))

        return await call_next(request)
