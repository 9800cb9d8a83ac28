"""
Shared test fixtures for pytest.

Provides common fixtures for all test modules:
- fake_settings: Test environment configuration (in-memory SQLite)
- db_engine / db_session: Real async SQLAlchemy engine and session
- user_a, user_b: Persisted users for service-level tests
- ScriptedLLM: Stand-in for LLMClient returning canned replies
- enhancement: EnhancementClient used by the app (disabled -> fallbacks)
- test_app: FastAPI app wired to the test database and enhancement client
- client_a, client_b, client_demo: Pre-authenticated HTTP clients
- create_dev_token / make_token: Helpers to mint HS256 test JWTs
"""

from __future__ import annotations

import asyncio
import datetime as dt
import uuid
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import jwt
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

import goal_tracker.models  # noqa: F401 - registers all models with Base.metadata
from goal_tracker.config import Environment, Settings, get_settings
from goal_tracker.database import Base, build_engine, make_session_factory
from goal_tracker.enhancement.client import EnhancementClient
from goal_tracker.models.user import User
from goal_tracker.telemetry import clear_context

# Same value as the Settings default so AuthMiddleware (which reads the
# real settings) accepts the tokens too.
TEST_JWT_SECRET = "dev-only-jwt-secret-not-for-production"
TEST_AUDIENCE = "goal-tracker-api"
DEMO_EMAIL = "demo@example.com"
FIXED_TODAY = dt.date(2025, 1, 1)


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Request and user ids bound by one test must not leak into the next."""
    yield
    clear_context()


# ------------------------------------------------------------------ #
# JWT helpers
# ------------------------------------------------------------------ #

def create_dev_token(
    *,
    sub: str,
    email: str = "",
    name: str | None = None,
    secret: str,
    audience: str = TEST_AUDIENCE,
    expires_in: int = 3600,
) -> str:
    """Mint an HS256 token of the kind accepted in dev/test mode."""
    now = int(dt.datetime.now(dt.UTC).timestamp())
    payload: dict[str, Any] = {
        "sub": sub,
        "email": email,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        "jti": str(uuid.uuid4()),
    }
    if name:
        payload["name"] = name
    return jwt.encode(payload, secret, algorithm="HS256")


def make_token(sub: str, email: str = "user@example.com", name: str | None = None) -> str:
    """Create a test JWT token using HS256."""
    return create_dev_token(
        sub=sub,
        email=email,
        name=name,
        secret=TEST_JWT_SECRET,
        audience=TEST_AUDIENCE,
    )


def auth_header(sub: str, email: str = "user@example.com") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(sub, email)}"}


# ------------------------------------------------------------------ #
# Scripted LLM
# ------------------------------------------------------------------ #

class ScriptedLLM:
    """Duck-typed LLMClient replacement.

    ``reply`` is a string returned verbatim, an exception to raise, or a
    callable taking the messages and returning either. ``delay`` makes the
    call slow enough to trip the client timeout.
    """

    def __init__(
        self,
        reply: str | BaseException | Callable[[list[dict[str, str]]], Any] = "{}",
        *,
        delay: float = 0.0,
    ) -> None:
        self.reply = reply
        self.delay = delay
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, *, messages: list[dict[str, str]], **kwargs: Any) -> Any:
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.reply(messages) if callable(self.reply) else self.reply
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def extract_text(self, response: Any) -> str:
        return str(response)


def scripted_client(
    reply: str | BaseException | Callable[[list[dict[str, str]]], Any] = "{}",
    *,
    delay: float = 0.0,
    timeout_seconds: float = 5.0,
) -> tuple[EnhancementClient, ScriptedLLM]:
    llm = ScriptedLLM(reply, delay=delay)
    return EnhancementClient(llm, timeout_seconds=timeout_seconds), llm  # type: ignore[arg-type]


# ------------------------------------------------------------------ #
# Settings & Database Fixtures
# ------------------------------------------------------------------ #

@pytest.fixture
def fake_settings() -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        environment=Environment.TEST,
        secret_key="test-secret-key",  # type: ignore[arg-type]
        database_url="sqlite+aiosqlite:///:memory:",
        dev_jwt_secret=TEST_JWT_SECRET,  # type: ignore[arg-type]
        oidc_audience=TEST_AUDIENCE,
        enhancement_enabled=False,
        demo_user_email=DEMO_EMAIL,
        debug=True,
        db_echo_sql=False,
    )


@pytest.fixture
async def db_engine(fake_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema and FK enforcement."""
    engine = build_engine(fake_settings, for_test=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Real async session for service tests. Rolled back at teardown."""
    factory = make_session_factory(db_engine)
    async with factory() as session:
        yield session
        await session.rollback()


async def _make_user(session: AsyncSession, sub: str, email: str) -> User:
    user = User(external_id=sub, email=email, display_name=sub)
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
async def user_a(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "user-a", "a@example.com")


@pytest.fixture
async def user_b(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "user-b", "b@example.com")


# ------------------------------------------------------------------ #
# App Fixtures
# ------------------------------------------------------------------ #

@pytest.fixture
def enhancement() -> EnhancementClient:
    """Disabled client: every enhancement degrades to its fallback."""
    return EnhancementClient(None)


@pytest.fixture
def test_app(
    fake_settings: Settings,
    db_engine: AsyncEngine,
    enhancement: EnhancementClient,
    monkeypatch: pytest.MonkeyPatch,
) -> FastAPI:
    """Create FastAPI test app instance bound to the test database.

    Overrides settings, the DB session, the enhancement client and the
    current date so responses are deterministic.
    """
    from goal_tracker.api.deps import get_enhancement_client, get_today
    from goal_tracker.database import get_db_session
    from goal_tracker.main import create_app

    monkeypatch.setattr("goal_tracker.auth.middleware.get_settings", lambda: fake_settings)
    app = create_app()

    factory = make_session_factory(db_engine)

    async def _get_test_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_settings] = lambda: fake_settings
    app.dependency_overrides[get_db_session] = _get_test_db_session
    app.dependency_overrides[get_enhancement_client] = lambda: enhancement
    app.dependency_overrides[get_today] = lambda: FIXED_TODAY
    return app


def _client(app: FastAPI, headers: dict[str, str] | None = None) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)  # type: ignore[arg-type]
    return httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
        headers=headers or {},
    )


@pytest.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Unauthenticated client."""
    async with _client(test_app) as ac:
        yield ac


@pytest.fixture
async def client_a(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client authenticated as user A."""
    async with _client(test_app, auth_header("api-user-a", "alice@example.com")) as ac:
        yield ac


@pytest.fixture
async def client_b(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client authenticated as user B."""
    async with _client(test_app, auth_header("api-user-b", "bob@example.com")) as ac:
        yield ac


@pytest.fixture
async def client_demo(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client authenticated as the configured demo account."""
    async with _client(test_app, auth_header("demo-user", DEMO_EMAIL.upper())) as ac:
        yield ac


# ------------------------------------------------------------------ #
# Data helpers
# ------------------------------------------------------------------ #

GOAL_PAYLOAD: dict[str, Any] = {
    "title": "Learn X",
    "description": "Get comfortable with X",
    "category": "learning",
    "deadline": "2025-06-01",
}


async def create_goal(client: httpx.AsyncClient, **overrides: Any) -> dict[str, Any]:
    resp = await client.post("/api/v1/goals", json={**GOAL_PAYLOAD, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()
