"""Tests for FastAPI authentication dependencies.

Coverage:
- Claims set by the middleware are reused
- Fallback validation from the Authorization header
- JIT user provisioning
- Deactivated user returns 403
- last_login_at timestamp update
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException, status
from sqlalchemy import select

from goal_tracker.auth.dependencies import _extract_and_validate_token, get_current_user
from goal_tracker.models.user import User
from tests.conftest import make_token


@pytest.fixture
def mock_request() -> MagicMock:
    request = MagicMock()
    request.state = MagicMock()
    request.state.auth_claims = None
    request.headers = {}
    return request


class TestExtractAndValidateToken:
    async def test_reuses_middleware_claims(self, mock_request, fake_settings):
        mock_request.state.auth_claims = {"sub": "from-middleware"}
        claims = await _extract_and_validate_token(mock_request, fake_settings)
        assert claims == {"sub": "from-middleware"}

    async def test_validates_header_when_middleware_did_not(self, mock_request, fake_settings):
        mock_request.headers = {"Authorization": f"Bearer {make_token('header-user')}"}
        claims = await _extract_and_validate_token(mock_request, fake_settings)
        assert claims["sub"] == "header-user"

    async def test_missing_header_is_401(self, mock_request, fake_settings):
        with pytest.raises(HTTPException) as exc_info:
            await _extract_and_validate_token(mock_request, fake_settings)
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_invalid_token_is_401(self, mock_request, fake_settings):
        mock_request.headers = {"Authorization": "Bearer nope"}
        with pytest.raises(HTTPException) as exc_info:
            await _extract_and_validate_token(mock_request, fake_settings)
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED


class TestGetCurrentUser:
    async def test_provisions_new_user(self, mock_request, db_session, fake_settings):
        mock_request.state.auth_claims = {
            "sub": "new-user",
            "email": "new@example.com",
            "name": "New User",
        }

        current = await get_current_user(mock_request, db=db_session, settings=fake_settings)

        assert current.email == "new@example.com"
        assert current.user.display_name == "New User"
        assert current.user.last_login_at is not None
        stored = (
            await db_session.execute(select(User).where(User.external_id == "new-user"))
        ).scalar_one()
        assert stored.id == current.id

    async def test_missing_email_gets_placeholder(self, mock_request, db_session, fake_settings):
        mock_request.state.auth_claims = {"sub": "no-mail"}
        current = await get_current_user(mock_request, db=db_session, settings=fake_settings)
        assert current.email == "no-mail@unknown"

    async def test_existing_user_is_reused(self, mock_request, db_session, fake_settings, user_a):
        mock_request.state.auth_claims = {"sub": user_a.external_id, "email": "changed@example.com"}

        current = await get_current_user(mock_request, db=db_session, settings=fake_settings)

        assert current.id == user_a.id
        # email comes from the stored record
        assert current.email == "a@example.com"

    async def test_deactivated_user_is_403(self, mock_request, db_session, fake_settings, user_a):
        user_a.is_active = False
        await db_session.flush()
        mock_request.state.auth_claims = {"sub": user_a.external_id}

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(mock_request, db=db_session, settings=fake_settings)
        assert exc_info.value.status_code == status.HTTP_403_FORBIDDEN
