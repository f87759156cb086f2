"""FastAPI application entry point.

This module creates and configures the FastAPI application, including:
- Security middleware (scanner blocking, response headers, CORS)
- Shared security components on app.state (one limiter per process)
- Exception handlers rendering the {"error", "message"} envelope
- API v1 router mounting
- Health check endpoint
"""

from datetime import timedelta

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from signgate.api.deps import jwt_cookie_identity_resolver
from signgate.api.v1.router import router as v1_router
from signgate.core.config import Settings
from signgate.core.config import settings as default_settings
from signgate.core.errors import APIError, InternalError
from signgate.core.logging_config import configure_logging, is_configured
from signgate.core.middleware import SecurityHeadersMiddleware, SuspiciousAgentMiddleware
from signgate.core.responses import ErrorResponse
from signgate.repositories.signing_link_repository import InMemorySigningLinkRepository
from signgate.security.pipeline import RequestSecurityPipeline
from signgate.security.rate_limiter import RateLimiter
from signgate.security.tokens import Clock, TokenAuthority, utc_now
from signgate.services.signing_links import SigningLinkService

logger = structlog.get_logger()


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors.

    Args:
        request: The incoming request.
        exc: The APIError that was raised.

    Returns:
        JSONResponse with error envelope, status code, and extra headers.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.from_api_error(exc).to_content(),
        headers=exc.headers or None,
    )


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors from FastAPI (path, query params).

    Field-level detail stays in the logs; callers get the generic envelope.
    """
    logger.info(
        "Request validation failed",
        errors=[{"loc": list(e["loc"]), "type": e["type"]} for e in exc.errors()],
    )
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="Invalid request", message="Request validation failed"
        ).to_content(),
    )


def http_exception_handler(
    _request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Render routing-level errors (unknown path, method) in the envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail)).to_content(),
        headers=exc.headers,
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions.

    Never expose internal error details to clients. Log for debugging.

    Args:
        request: The incoming request.
        exc: The unhandled exception.

    Returns:
        JSONResponse with generic error message (500).
    """
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))

    return JSONResponse(
        status_code=500,
        content=ErrorResponse.from_api_error(InternalError()).to_content(),
    )


def create_app(settings: Settings | None = None, *, clock: Clock = utc_now) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to run with (default: loaded from the environment).
        clock: Time source shared by the token authority and rate limiter.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or default_settings

    if not is_configured():
        configure_logging(settings.log_level, json_logs=settings.json_logs)
    settings.warn_insecure_defaults()

    app = FastAPI(
        title="SignGate API",
        version="1.0.0",
        description="Signing links and request security for contract e-signature",
    )

    # Middleware order: Starlette uses LIFO, so the LAST added runs FIRST.
    # CORS must run first to handle preflight requests, so add it last.
    # Security headers wrap the scanner block so its 403 carries them too.
    app.add_middleware(SuspiciousAgentMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, production=settings.is_production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_origin, *settings.allowed_origins],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Request-ID"],
    )

    # Register exception handlers
    # Order matters: specific handlers first, then catch-all
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    # Shared security components. The limiter is the only mutable state in
    # the request path; every request in this process shares it.
    rate_limiter = RateLimiter.from_settings(settings, clock=clock)
    token_authority = TokenAuthority.from_settings(settings, clock=clock)
    signing_link_store = InMemorySigningLinkRepository()

    app.state.settings = settings
    app.state.rate_limiter = rate_limiter
    app.state.token_authority = token_authority
    app.state.signing_link_store = signing_link_store
    app.state.signing_link_service = SigningLinkService(
        token_authority,
        signing_link_store,
        rate_limiter,
        public_base_url=settings.public_base_url,
        window=timedelta(minutes=settings.rate_limit_window_minutes),
        max_attempts=settings.rate_limit_max_attempts,
        rate_limit=settings.rate_limit_enabled,
        clock=clock,
    )
    app.state.security_pipeline = RequestSecurityPipeline(
        rate_limiter,
        settings=settings,
        identity_resolver=jwt_cookie_identity_resolver(settings),
    )

    # Include v1 router at /api/v1
    app.include_router(v1_router, prefix="/api/v1")

    # Health check endpoint (outside versioned API)
    @app.get("/health")
    def health_check() -> dict:
        """Health check endpoint for monitoring.

        Returns:
            {"status": "healthy"} if service is running.
        """
        return {"status": "healthy"}

    return app


# Create the application instance
# Used by uvicorn: uvicorn signgate.main:app
app = create_app()
