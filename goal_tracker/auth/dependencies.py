"""FastAPI dependencies for authentication.

Key dependency:
- get_current_user: Resolve JWT claims -> User ORM object

Design: JIT user provisioning
  If a user authenticates successfully via JWT but does not yet exist in
  our database, we create them automatically. This avoids the need for a
  separate user provisioning step when using SSO.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from goal_tracker.auth.oidc import TokenValidationError, validate_token
from goal_tracker.config import Settings, get_settings
from goal_tracker.database import get_db_session
from goal_tracker.models.user import User
from goal_tracker.telemetry import bind_user_context

log = structlog.get_logger(__name__)


class AuthenticatedUser:
    """Lightweight container passed to route handlers.

    Combines the ORM User object with the raw JWT claims so that routes
    can access both the database record and any custom claims without
    needing extra queries.
    """

    def __init__(self, user: User, claims: dict[str, Any]) -> None:
        self.user = user
        self.claims = claims

    @property
    def id(self) -> uuid.UUID:
        return self.user.id

    @property
    def email(self) -> str:
        return self.user.email


async def _extract_and_validate_token(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Extract Bearer token and validate it.

    Returns validated claims dict. Raises HTTP 401 on any failure.
    """
    # Check if middleware already validated the token
    if getattr(request.state, "auth_claims", None) is not None:
        return request.state.auth_claims  # type: ignore[no-any-return]

    # Fallback: validate here (for routes that bypass middleware)
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = auth_header.removeprefix("Bearer ").strip()
    try:
        return await validate_token(token, settings)
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    """Resolve authentication to a User ORM object.

    Creates the user record if it doesn't exist (JIT provisioning).
    Raises HTTP 401 if the token is missing or invalid.
    Raises HTTP 403 if the user's account is deactivated.
    """
    claims = await _extract_and_validate_token(request=request, settings=settings)
    sub = claims["sub"]

    result = await db.execute(select(User).where(User.external_id == sub))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            external_id=sub,
            email=claims.get("email") or f"{sub}@unknown",
            display_name=claims.get("name"),
        )
        db.add(user)
        await db.flush()  # Get the generated UUID
        log.info("auth.user_provisioned", user_id=str(user.id))

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    user.last_login_at = datetime.now(UTC)
    bind_user_context(user.id)

    return AuthenticatedUser(user=user, claims=claims)
