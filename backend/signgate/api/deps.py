"""Shared dependencies for API endpoints.

Endpoints declare their security requirements with secure_endpoint(), which
runs the request security pipeline before the handler and hands the handler
the verdict (sanitized body, resolved identity, client identifier).

Identity comes from an HS256 JWT in an httpOnly cookie. Auth failures are
deliberately vague: the pipeline renders every one as the same 401.
"""

from collections.abc import Awaitable, Callable
from typing import Annotated

import jwt
import structlog
from fastapi import Depends, Request

from signgate.core.config import Settings
from signgate.security.pipeline import (
    IdentityResolver,
    RequestSecurityPipeline,
    SecurityOptions,
    SecurityVerdict,
)
from signgate.security.rate_limiter import RateLimiter
from signgate.repositories.signing_link_repository import SigningLinkStore
from signgate.services.signing_links import SigningLinkService

logger = structlog.get_logger()


def jwt_cookie_identity_resolver(settings: Settings) -> IdentityResolver:
    """Build an identity resolver that validates the session JWT cookie.

    Validation steps:
    1. Read JWT from cookie
    2. Decode + verify signature (HS256)
    3. Verify exp, aud, iss claims
    4. Return the sub claim

    Args:
        settings: Source of secret, issuer, audience, and cookie name.

    Returns:
        Async resolver returning the subject, or None for any failure.
    """

    async def resolve(request: Request) -> str | None:
        secret = settings.auth_secret.get_secret_value()
        if not secret:
            return None

        token = request.cookies.get(settings.auth_cookie_name)
        if not token:
            return None

        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                audience=settings.auth_audience,
                issuer=settings.auth_issuer,
                options={"require": ["exp", "sub"]},
            )
        except jwt.InvalidTokenError as exc:
            logger.debug("Session token rejected", reason=type(exc).__name__)
            return None

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            return None
        return subject

    return resolve


def get_security_pipeline(request: Request) -> RequestSecurityPipeline:
    """Get the application's shared security pipeline."""
    return request.app.state.security_pipeline


def get_rate_limiter(request: Request) -> RateLimiter:
    """Get the application's shared rate limiter."""
    return request.app.state.rate_limiter


def get_signing_link_service(request: Request) -> SigningLinkService:
    """Get the application's signing link service."""
    return request.app.state.signing_link_service


def get_signing_link_store(request: Request) -> SigningLinkStore:
    """Get the application's signing link store."""
    return request.app.state.signing_link_store


def get_settings(request: Request) -> Settings:
    """Get the settings the application was created with."""
    return request.app.state.settings


def secure_endpoint(
    options: SecurityOptions | None = None,
) -> Callable[[Request], Awaitable[SecurityVerdict]]:
    """Create a dependency that runs the security pipeline for an endpoint.

    Usage:
        @router.post("/signing-links")
        async def create(
            verdict: Annotated[
                SecurityVerdict,
                Depends(secure_endpoint(SecurityOptions(require_auth=True))),
            ],
        ) -> ...:
            payload = verdict.body

    Args:
        options: Call-site options (defaults apply when omitted).

    Returns:
        Dependency that returns the verdict when the request is allowed.

    Raises:
        APIError: The pipeline's rejection, rendered by the app's handler.
    """
    endpoint_options = options or SecurityOptions()

    async def dependency(
        request: Request,
        pipeline: Annotated[RequestSecurityPipeline, Depends(get_security_pipeline)],
    ) -> SecurityVerdict:
        verdict = await pipeline.evaluate(request, endpoint_options)
        if not verdict.allowed and verdict.rejection is not None:
            raise verdict.rejection
        return verdict

    return dependency
