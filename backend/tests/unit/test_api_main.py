"""Tests for the FastAPI application: routes, envelopes, and security wiring."""

import uuid
from datetime import timedelta
from urllib.parse import urlsplit

import pytest

from tests.conftest import TEST_ORIGIN, create_test_jwt

_CONTRACT_ID = "11111111-2222-3333-4444-555555555555"
_SESSION_COOKIE = "signgate.session-token"


@pytest.fixture
def authed(client, auth_cookies):
    """Client carrying a valid session cookie."""
    client.cookies.update(auth_cookies)
    return client


async def _issue_link(client, **body) -> str:
    response = await client.post(
        "/api/v1/signing-links",
        json={"contract_id": _CONTRACT_ID, **body},
        headers={"origin": TEST_ORIGIN},
    )
    assert response.status_code == 201, response.text
    return urlsplit(response.json()["data"]["url"]).path


class TestHealth:
    """Health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        """/health reports healthy."""
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestCreateSigningLink:
    """POST /api/v1/signing-links."""

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        """Anonymous callers get 401."""
        response = await client.post(
            "/api/v1/signing-links",
            json={"contract_id": _CONTRACT_ID},
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 401
        assert response.json() == {
            "error": "Unauthorized",
            "message": "Authentication required",
        }

    @pytest.mark.asyncio
    async def test_expired_session_rejected(self, client):
        """An expired session JWT is treated as anonymous."""
        client.cookies.set(
            _SESSION_COOKIE, create_test_jwt(expires_delta=timedelta(seconds=-10))
        )
        response = await client.post(
            "/api/v1/signing-links",
            json={"contract_id": _CONTRACT_ID},
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_audience_rejected(self, client):
        """A JWT minted for another audience is rejected."""
        client.cookies.set(_SESSION_COOKIE, create_test_jwt(audience="other-app"))
        response = await client.post(
            "/api/v1/signing-links",
            json={"contract_id": _CONTRACT_ID},
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, client):
        """A JWT signed with another secret is rejected."""
        client.cookies.set(_SESSION_COOKIE, create_test_jwt(secret="x" * 40))
        response = await client.post(
            "/api/v1/signing-links",
            json={"contract_id": _CONTRACT_ID},
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_issues_link(self, authed):
        """Authenticated callers get a signing URL and expiry."""
        response = await authed.post(
            "/api/v1/signing-links",
            json={"contract_id": _CONTRACT_ID, "expires_in_days": 3},
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["contract_id"] == _CONTRACT_ID
        assert data["url"].startswith(f"{TEST_ORIGIN}/sign/")
        assert data["expires_at"] is not None

    @pytest.mark.asyncio
    async def test_foreign_origin_forbidden(self, authed):
        """Cross-site requests are rejected with 403."""
        response = await authed.post(
            "/api/v1/signing-links",
            json={"contract_id": _CONTRACT_ID},
            headers={"origin": "https://evil.example"},
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Invalid request origin"

    @pytest.mark.asyncio
    async def test_wrong_content_type(self, authed):
        """Non-JSON bodies get 415."""
        response = await authed.post(
            "/api/v1/signing-links",
            content=b"contract_id=1",
            headers={
                "origin": TEST_ORIGIN,
                "content-type": "application/x-www-form-urlencoded",
            },
        )
        assert response.status_code == 415
        assert response.json()["error"] == "Invalid content type"

    @pytest.mark.asyncio
    async def test_malformed_json(self, authed):
        """Broken JSON gets 400 Invalid JSON."""
        response = await authed.post(
            "/api/v1/signing-links",
            content=b'{"contract_id": ',
            headers={"origin": TEST_ORIGIN, "content-type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON"

    @pytest.mark.asyncio
    async def test_injection_rejected(self, authed):
        """Injection payloads get 400 Invalid input with no findings echoed."""
        response = await authed.post(
            "/api/v1/signing-links",
            json={"contract_id": "1' OR '1'='1"},
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 400
        assert response.json() == {
            "error": "Invalid input",
            "message": "Request contains potentially dangerous content",
        }

    @pytest.mark.asyncio
    async def test_invalid_contract_id(self, authed):
        """Schema violations after sanitizing get 400 Invalid request."""
        response = await authed.post(
            "/api/v1/signing-links",
            json={"contract_id": "not-a-uuid"},
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    @pytest.mark.asyncio
    async def test_oversized_body(self, authed, app):
        """Bodies over MAX_BODY_SIZE_BYTES get 413."""
        limit = app.state.settings.max_body_size_bytes
        response = await authed.post(
            "/api/v1/signing-links",
            json={"contract_id": _CONTRACT_ID, "pad": "x" * (limit + 1)},
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 413
        assert response.json()["error"] == "Payload too large"


class TestResolveSigningLink:
    """GET /api/v1/sign/{token}."""

    @pytest.mark.asyncio
    async def test_round_trip(self, authed):
        """An issued link resolves to its contract."""
        path = await _issue_link(authed)
        token = path.rsplit("/", 1)[1]
        response = await authed.get(f"/api/v1/sign/{token}")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["contract_id"] == _CONTRACT_ID
        assert data["status"] == "sent"
        assert data["read_only"] is False

    @pytest.mark.asyncio
    async def test_unknown_token(self, client):
        """Unknown tokens get 404 without detail beyond "Invalid token"."""
        response = await client.get(f"/api/v1/sign/{'0' * 64}")
        assert response.status_code == 404
        assert response.json() == {
            "error": "Contract not found",
            "message": "Invalid token",
        }

    @pytest.mark.asyncio
    async def test_expired_token(self, authed, clock):
        """Expired links get 404 with the expiry message."""
        path = await _issue_link(authed, expires_in_days=1)
        clock.advance(timedelta(days=2))
        response = await authed.get(f"/api/v1{path}")
        assert response.status_code == 404
        assert response.json()["message"] == "This signing link has expired"

    @pytest.mark.asyncio
    async def test_rate_limited_per_client(self, client):
        """The sixth attempt from one IP gets 429 with Retry-After."""
        headers = {"x-forwarded-for": "203.0.113.77"}
        for _ in range(5):
            response = await client.get(f"/api/v1/sign/{'1' * 64}", headers=headers)
            assert response.status_code == 404

        response = await client.get(f"/api/v1/sign/{'1' * 64}", headers=headers)
        assert response.status_code == 429
        assert response.headers["retry-after"] == "60"
        assert response.json()["error"] == "Rate limit exceeded"

    @pytest.mark.asyncio
    async def test_disallowed_method(self, client):
        """Other methods get the 405 envelope with Allow."""
        response = await client.put(f"/api/v1/sign/{'1' * 64}")
        assert response.status_code == 405
        assert response.headers["allow"] == "GET, POST"
        assert response.json()["error"] == "Method not allowed"


class TestConsumeSigningLink:
    """POST /api/v1/sign/{token}."""

    @pytest.mark.asyncio
    async def test_signs_contract(self, authed):
        """The first POST signs the contract; GET then opens it read-only."""
        path = await _issue_link(authed)
        response = await authed.post(
            f"/api/v1{path}", json={}, headers={"origin": TEST_ORIGIN}
        )
        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert data["status"] == "signed"
        assert data["read_only"] is True

        response = await authed.get(f"/api/v1{path}")
        assert response.status_code == 200
        assert response.json()["data"]["read_only"] is True

    @pytest.mark.asyncio
    async def test_second_post_rejected(self, authed):
        """A link signs once."""
        path = await _issue_link(authed)
        await authed.post(f"/api/v1{path}", json={}, headers={"origin": TEST_ORIGIN})
        response = await authed.post(
            f"/api/v1{path}", json={}, headers={"origin": TEST_ORIGIN}
        )
        assert response.status_code == 404
        assert response.json()["message"] == "This signing link has already been used"

    @pytest.mark.asyncio
    async def test_reissued_link_replaces_old(self, authed):
        """Issuing a second link for the contract retires the first."""
        old_path = await _issue_link(authed)
        new_path = await _issue_link(authed)
        response = await authed.get(f"/api/v1{old_path}")
        assert response.status_code == 404
        assert response.json()["message"] == "Invalid token"
        response = await authed.get(f"/api/v1{new_path}")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_foreign_origin_forbidden(self, authed):
        """Signing from another site is rejected before the link is spent."""
        path = await _issue_link(authed)
        response = await authed.post(
            f"/api/v1{path}", json={}, headers={"origin": "https://evil.example"}
        )
        assert response.status_code == 403
        response = await authed.get(f"/api/v1{path}")
        assert response.json()["data"]["read_only"] is False


class TestAdminSigningAttempts:
    """GET /api/v1/admin/signing-attempts/{identifier}."""

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        """Anonymous callers get 401."""
        response = await client.get("/api/v1/admin/signing-attempts/1.2.3.4")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_lists_client_attempts(self, authed):
        """Attempts for the named client come back oldest first."""
        headers = {"x-forwarded-for": "192.0.2.44"}
        path = await _issue_link(authed)
        await authed.get(f"/api/v1/sign/{'3' * 64}", headers=headers)
        await authed.get(f"/api/v1{path}", headers=headers)

        response = await authed.get("/api/v1/admin/signing-attempts/192.0.2.44")
        assert response.status_code == 200
        attempts = response.json()["data"]
        assert [a["success"] for a in attempts] == [False, True]
        assert attempts[0]["contract_id"] is None
        assert attempts[1]["contract_id"] == _CONTRACT_ID
        assert {a["client_id"] for a in attempts} == {"192.0.2.44"}


class TestAdminRateLimits:
    """DELETE /api/v1/admin/rate-limits/{identifier}."""

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        """Anonymous callers get 401."""
        response = await client.delete("/api/v1/admin/rate-limits/1.2.3.4")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_clears_signing_limit(self, authed):
        """A cleared client can resolve links again immediately."""
        blocked = {"x-forwarded-for": "198.51.100.9"}
        for _ in range(6):
            response = await authed.get(f"/api/v1/sign/{'2' * 64}", headers=blocked)
        assert response.status_code == 429

        response = await authed.delete(
            "/api/v1/admin/rate-limits/198.51.100.9",
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 204

        response = await authed.get(f"/api/v1/sign/{'2' * 64}", headers=blocked)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_scope_filter(self, authed, app):
        """Naming a scope clears only that scope."""
        limiter = app.state.rate_limiter
        limiter.check_and_consume("signing:10.0.0.1")
        limiter.check_and_consume("api:10.0.0.1")

        response = await authed.delete(
            "/api/v1/admin/rate-limits/10.0.0.1?scope=signing",
            headers={"origin": TEST_ORIGIN},
        )
        assert response.status_code == 204
        assert limiter.reset_at("signing:10.0.0.1") is None
        assert limiter.reset_at("api:10.0.0.1") is not None


class TestErrorEnvelope:
    """Routing errors use the same envelope."""

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        """Unknown paths get a 404 envelope."""
        response = await client.get(f"/api/v1/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}
