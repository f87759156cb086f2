import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from signgate.core.config import Settings
from signgate.main import create_app

# Security: Test-only secrets. Production reads real secrets from env.
TEST_TOKEN_SECRET = "test-signing-secret-that-is-at-least-32-chars"  # nosec B105  # gitleaks:allow
TEST_AUTH_SECRET = "test-auth-secret-key-that-is-at-least-32-characters"  # nosec B105  # gitleaks:allow

TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
TEST_ORIGIN = "https://app.signgate.test"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def make_settings(**overrides) -> Settings:
    """Build Settings for tests without reading .env."""
    values = {
        "environment": "test",
        "signing_token_secret": SecretStr(TEST_TOKEN_SECRET),
        "auth_secret": SecretStr(TEST_AUTH_SECRET),
        "app_origin": TEST_ORIGIN,
        "public_base_url": TEST_ORIGIN,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def create_test_jwt(
    user_id: uuid.UUID = TEST_USER_ID,
    *,
    secret: str = TEST_AUTH_SECRET,
    expires_delta: timedelta | None = None,
    audience: str = "signgate",
    issuer: str = "signgate",
) -> str:
    """Create a signed session JWT for test authentication."""
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "aud": audience,
        "iss": issuer,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(test_settings: Settings, clock: FakeClock) -> FastAPI:
    """Create test application instance with a fake clock."""
    return create_app(test_settings, clock=clock)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_cookies() -> dict[str, str]:
    """Session cookie for an authenticated test user."""
    return {"signgate.session-token": create_test_jwt()}
