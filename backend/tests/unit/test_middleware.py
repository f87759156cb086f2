"""Tests for SecurityHeadersMiddleware and SuspiciousAgentMiddleware."""

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from signgate.core.middleware import (
    HSTS_VALUE,
    PERMISSIONS_POLICY,
    is_suspicious_user_agent,
)
from signgate.main import create_app
from tests.conftest import make_settings

_EXPECTED_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "SAMEORIGIN",
    "x-xss-protection": "1; mode=block",
    "referrer-policy": "strict-origin-when-cross-origin",
    "permissions-policy": PERMISSIONS_POLICY,
}


class TestSecurityHeaders:
    """Every response carries the fixed header set."""

    @pytest.mark.asyncio
    async def test_headers_on_success(self, client):
        """Successful responses carry every security header."""
        response = await client.get("/health")
        assert response.status_code == 200
        for name, value in _EXPECTED_HEADERS.items():
            assert response.headers[name] == value

    @pytest.mark.asyncio
    async def test_headers_on_rejection(self, client):
        """Pipeline rejections carry the headers too."""
        response = await client.put("/api/v1/sign/abc")
        assert response.status_code == 405
        assert response.headers["x-frame-options"] == "SAMEORIGIN"

    @pytest.mark.asyncio
    async def test_api_responses_not_cached(self, client):
        """API responses are marked no-store."""
        response = await client.get("/api/v1/sign/abc")
        assert response.headers["cache-control"] == "no-store, max-age=0"

    @pytest.mark.asyncio
    async def test_no_hsts_outside_production(self, client):
        """HSTS is only sent in production."""
        response = await client.get("/health")
        assert "strict-transport-security" not in response.headers

    @pytest.mark.asyncio
    async def test_hsts_in_production(self):
        """Production responses carry HSTS."""
        app = create_app(
            make_settings(
                environment="production",
                signing_token_secret=SecretStr("p" * 64),
            )
        )
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            response = await ac.get("/health")
        assert response.headers["strict-transport-security"] == HSTS_VALUE


class TestSuspiciousAgents:
    """Scanner user agents are blocked with a bare 403."""

    @pytest.mark.parametrize(
        "user_agent",
        [
            "sqlmap/1.7.2#stable (https://sqlmap.org)",
            "Mozilla/5.00 (Nikto/2.1.6)",
            "masscan/1.3",
            "Nmap Scripting Engine",
            "../../etc/passwd",
            "<script>alert(1)</script>",
        ],
    )
    def test_detects_suspicious(self, user_agent):
        """Known scanner and injection markers match."""
        assert is_suspicious_user_agent(user_agent)

    def test_browser_is_not_suspicious(self):
        """Ordinary browsers pass."""
        assert not is_suspicious_user_agent(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/605.1.15"
        )

    @pytest.mark.asyncio
    async def test_blocked_with_plain_forbidden(self, client):
        """A sqlmap request gets text/plain 403 Forbidden."""
        response = await client.get("/health", headers={"user-agent": "sqlmap/1.7"})
        assert response.status_code == 403
        assert response.text == "Forbidden"
        assert response.headers["content-type"].startswith("text/plain")

    @pytest.mark.asyncio
    async def test_blocked_before_rate_limit(self, client, app):
        """Blocked requests never reach the limiter."""
        await client.get("/api/v1/sign/abc", headers={"user-agent": "nikto"})
        assert len(app.state.rate_limiter) == 0

    @pytest.mark.asyncio
    async def test_normal_agent_passes(self, client):
        """httpx's default agent is allowed through."""
        response = await client.get("/health")
        assert response.status_code == 200
