"""Bearer token validation.

Outside dev/test the token must be an RS256/ES256 JWT signed by a key from
the identity provider's JWKS, found through its discovery document and
kept for ``_JWKS_TTL_SECONDS``. In dev/test an HS256 token signed with
``DEV_JWT_SECRET`` is accepted instead and the IdP is never contacted.

Either way the token must carry ``sub`` (matched against
``users.external_id``) and an ``aud`` that includes ``OIDC_AUDIENCE``.
``email`` and ``name`` are read when present; the email also picks the demo
goal reader (see ``services.goal_readers``).
"""

from __future__ import annotations

import time
from typing import Any

import httpx
import jwt
import structlog
from jwt.exceptions import DecodeError, InvalidTokenError

from goal_tracker.config import Settings

log = structlog.get_logger(__name__)

_jwks_cache: dict[str, Any] = {}  # kid -> JWK
_jwks_fetched_at: float = 0.0
_JWKS_TTL_SECONDS = 300

_REQUIRED_CLAIMS = ("sub",)


class TokenValidationError(Exception):
    """Raised when a bearer token is rejected."""


async def _fetch_jwks(issuer_url: str) -> dict[str, Any]:
    discovery_url = f"{issuer_url.rstrip('/')}/.well-known/openid-configuration"
    async with httpx.AsyncClient(timeout=10.0) as client:
        discovery = await client.get(discovery_url)
        discovery.raise_for_status()
        keys = await client.get(discovery.json()["jwks_uri"])
        keys.raise_for_status()
        return keys.json()  # type: ignore[no-any-return]


async def _get_jwks(settings: Settings) -> dict[str, Any]:
    global _jwks_cache, _jwks_fetched_at
    now = time.monotonic()
    if _jwks_cache and now - _jwks_fetched_at <= _JWKS_TTL_SECONDS:
        return _jwks_cache

    raw = await _fetch_jwks(settings.oidc_issuer_url)
    _jwks_cache = {key["kid"]: key for key in raw.get("keys", [])}
    _jwks_fetched_at = now
    log.info("oidc.jwks_refreshed", key_count=len(_jwks_cache))
    return _jwks_cache


async def validate_token(token: str, settings: Settings) -> dict[str, Any]:
    """Return the claims of ``token``.

    Raises:
        TokenValidationError: Bad signature, expired, wrong audience or
            issuer, missing ``sub``, or the signing keys could not be loaded.
    """
    if settings.is_dev:
        return _validate_dev_token(token, settings)

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except (DecodeError, InvalidTokenError) as exc:
        raise TokenValidationError(f"Cannot decode token header: {exc}") from exc

    try:
        jwks = await _get_jwks(settings)
    except (httpx.HTTPError, ValueError, KeyError) as exc:
        log.error("oidc.jwks_unavailable", error=str(exc))
        raise TokenValidationError("Signing keys unavailable") from exc

    if kid in jwks:
        key_data = jwks[kid]
    elif jwks:
        # kid-less tokens from a single-key issuer
        key_data = next(iter(jwks.values()))
    else:
        raise TokenValidationError("No JWKS keys available")

    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            jwt.PyJWK(key_data).key,
            algorithms=["RS256", "ES256"],
            audience=settings.oidc_audience,
            issuer=settings.oidc_issuer_url,
            options={"verify_exp": True, "verify_iat": True},
        )
    except (DecodeError, InvalidTokenError) as exc:
        raise TokenValidationError(f"Token validation failed: {exc}") from exc

    _assert_required_claims(claims)
    return claims


_dev_mode_warned = False


def _validate_dev_token(token: str, settings: Settings) -> dict[str, Any]:
    global _dev_mode_warned
    if not _dev_mode_warned:
        log.warning("oidc.dev_mode_validation", algorithm="HS256")
        _dev_mode_warned = True
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            settings.dev_jwt_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.oidc_audience,
        )
    except (DecodeError, InvalidTokenError) as exc:
        raise TokenValidationError(f"Dev token validation failed: {exc}") from exc

    _assert_required_claims(claims)
    return claims


def _assert_required_claims(claims: dict[str, Any]) -> None:
    missing = [c for c in _REQUIRED_CLAIMS if not claims.get(c)]
    if missing:
        raise TokenValidationError(f"Missing required JWT claims: {missing}")
