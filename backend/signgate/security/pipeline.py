"""Request security pipeline.

Every inbound API request passes through RequestSecurityPipeline before a
business handler runs. Stages execute in a fixed order and the first failure
is terminal. Later stages never run, and a rejected request's body is never
read past the stage that failed.

    1. method        405  HTTP method not in the call site's allow-list
    2. rate_limit    429  client (or business key) over its window budget
    3. csrf          403  state-changing request from a foreign origin
    4. content_type  415  body-carrying request with a disallowed media type
    5. body_size     413  body larger than the configured ceiling
    6. parse         400  body is not well-formed
    7. input_scan    400  injection signature found (body is sanitized otherwise)
    8. auth          401  require_auth set and no identity resolved

Each rejection is logged with the stage and client identifier, never the
body. CSRF and injection failures also go to the audit logger, since
repeated hits indicate probing rather than honest mistakes.

The pipeline does not retry and imposes no timeouts of its own. Body read
timeouts belong to the server hosting the app.
"""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from starlette.requests import Request
from starlette.responses import JSONResponse

from signgate.core.config import Settings
from signgate.core.errors import (
    APIError,
    ContentSecurityError,
    CSRFError,
    InternalError,
    InvalidJSONError,
    MethodNotAllowedError,
    PayloadTooLargeError,
    RateLimitedError,
    UnauthorizedError,
    UnsupportedMediaTypeError,
)
from signgate.core.logging_config import audit_logger
from signgate.core.responses import ErrorResponse
from signgate.security.client import (
    UNKNOWN_CLIENT,
    get_client_identifier,
    is_local_origin,
    normalize_origin,
    request_origin,
)
from signgate.security.input_security import (
    DEFAULT_MAX_DEPTH,
    sanitize_structured,
    scan,
)
from signgate.security.rate_limiter import RateLimiter
from signgate.security.validators import sanitize_rate_limit_key

logger = structlog.get_logger()

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
DEFAULT_ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

IdentityResolver = Callable[[Request], Awaitable[Any]]
"""Resolves the caller's identity, returning None (or raising
UnauthorizedError) when the request is not authenticated."""


class SecurityStage(str, Enum):
    """Pipeline stages, in execution order."""

    METHOD = "method"
    RATE_LIMIT = "rate_limit"
    CSRF = "csrf"
    CONTENT_TYPE = "content_type"
    BODY_SIZE = "body_size"
    PARSE = "parse"
    INPUT_SCAN = "input_scan"
    AUTH = "auth"
    INTERNAL = "internal"


class SecurityOptions(BaseModel):
    """Per-call-site pipeline configuration.

    Attributes:
        allowed_methods: HTTP methods the endpoint accepts.
        rate_limit: Run the rate limit stage.
        rate_limit_scope: Namespace for limiter keys, so endpoints with
            different budgets do not share a counter.
        rate_limit_key: Business identifier (email, phone) to limit on
            instead of the client IP.
        rate_limit_window: Window override (default: limiter's, 15 minutes).
        rate_limit_max_attempts: Budget override (default: limiter's, 5).
        validate_csrf: Run the origin check for state-changing methods.
        validate_input: Scan and sanitize the parsed body.
        allowed_content_types: Accepted media types for body-carrying methods.
        max_body_size: Byte ceiling (default: settings.max_body_size_bytes).
        max_depth: Nesting depth walked by the scanner and sanitizer.
        require_auth: Resolve the caller's identity and reject if absent.
    """

    model_config = ConfigDict(frozen=True)

    allowed_methods: tuple[str, ...] = DEFAULT_ALLOWED_METHODS
    rate_limit: bool = True
    rate_limit_scope: str = "api"
    rate_limit_key: str | None = None
    rate_limit_window: timedelta | None = None
    rate_limit_max_attempts: int | None = Field(default=None, gt=0)
    validate_csrf: bool = True
    validate_input: bool = True
    allowed_content_types: tuple[str, ...] | None = None
    max_body_size: int | None = Field(default=None, gt=0)
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, gt=0)
    require_auth: bool = False


@dataclass
class SecurityVerdict:
    """Outcome of running the pipeline over one request.

    Invariant: when allowed is False, body is None and rejection holds the
    terminal error. The business handler must not run.

    Attributes:
        allowed: Whether the request may reach the handler.
        errors: Ordered rejection reasons (scanner findings for input_scan).
        body: Sanitized body (None for bodiless methods or empty bodies).
        identity: Resolved caller identity when require_auth was set.
        client_id: Client identifier used for rate limiting and logs.
        stage: Stage that rejected the request.
        rejection: Error to render for a rejected request.
    """

    allowed: bool
    errors: list[str] = field(default_factory=list)
    body: Any = None
    identity: Any = None
    client_id: str = UNKNOWN_CLIENT
    stage: SecurityStage | None = None
    rejection: APIError | None = None

    def to_response(self) -> JSONResponse | None:
        """Render a rejected verdict as a JSON response (None if allowed)."""
        if self.allowed or self.rejection is None:
            return None
        return JSONResponse(
            status_code=self.rejection.status_code,
            content=ErrorResponse.from_api_error(self.rejection).to_content(),
            headers=self.rejection.headers or None,
        )


def media_type(content_type: str | None) -> str | None:
    """Extract the lowercased media type from a Content-Type header value."""
    if not content_type:
        return None
    value = content_type.split(";", 1)[0].strip().lower()
    return value or None


def _is_json_media_type(value: str) -> bool:
    return value == "application/json" or value.endswith("+json")


class _BodyTooLarge(Exception):
    pass


class RequestSecurityPipeline:
    """Runs the ordered security stages for a request.

    The limiter is the only shared mutable state; one pipeline instance is
    shared by every request in the process.

    Args:
        rate_limiter: Store consulted by the rate limit stage.
        settings: Origin, body size, content type, and environment config.
        identity_resolver: Collaborator used by the auth stage.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        *,
        settings: Settings,
        identity_resolver: IdentityResolver | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self._settings = settings
        self._identity_resolver = identity_resolver
        self._trusted_origins = frozenset(
            origin
            for origin in (
                normalize_origin(value)
                for value in (settings.app_origin, *settings.allowed_origins)
            )
            if origin
        )

    async def evaluate(
        self, request: Request, options: SecurityOptions | None = None
    ) -> SecurityVerdict:
        """Run every stage and return the verdict.

        Client errors come back as rejected verdicts. Unexpected failures
        are logged with their traceback and come back as a generic 500
        rejection. Detail is included only in development.

        Args:
            request: Incoming request. Its body stream is consumed for
                body-carrying methods, so handlers read verdict.body.
            options: Call-site options (defaults apply when omitted).

        Returns:
            SecurityVerdict.
        """
        options = options or SecurityOptions()
        client_id = (
            sanitize_rate_limit_key(get_client_identifier(request.headers))
            or UNKNOWN_CLIENT
        )
        try:
            return await self._run(request, options, client_id)
        except Exception as exc:
            logger.exception(
                "Security pipeline failed",
                exc_info=exc,
                method=request.method,
                path=request.url.path,
                client_id=client_id,
            )
            if self._settings.environment == "development":
                error = InternalError(f"Request processing failed: {exc}")
            else:
                error = InternalError()
            return SecurityVerdict(
                allowed=False,
                errors=[error.message],
                client_id=client_id,
                stage=SecurityStage.INTERNAL,
                rejection=error,
            )

    async def _run(
        self, request: Request, options: SecurityOptions, client_id: str
    ) -> SecurityVerdict:
        method = request.method.upper()

        # 1. Method
        allowed_methods = [m.upper() for m in options.allowed_methods]
        if method not in allowed_methods:
            return self._reject(
                request,
                SecurityStage.METHOD,
                MethodNotAllowedError(method, allowed_methods),
                client_id,
            )

        # 2. Rate limit
        if options.rate_limit and self._settings.rate_limit_enabled:
            identifier = (
                sanitize_rate_limit_key(options.rate_limit_key)
                if options.rate_limit_key
                else client_id
            )
            key = f"{options.rate_limit_scope}:{identifier}"
            if self.rate_limiter.check_and_consume(
                key, options.rate_limit_window, options.rate_limit_max_attempts
            ):
                return self._reject(
                    request, SecurityStage.RATE_LIMIT, RateLimitedError(), client_id
                )

        # 3. CSRF / origin
        if (
            options.validate_csrf
            and method in STATE_CHANGING_METHODS
            and not self._origin_allowed(request, client_id)
        ):
            return self._reject(request, SecurityStage.CSRF, CSRFError(), client_id)

        body: Any = None
        if method in BODY_METHODS:
            # 4. Content type
            allowed_types = tuple(
                t.lower()
                for t in (
                    options.allowed_content_types
                    or self._settings.allowed_content_types
                )
            )
            declared = media_type(request.headers.get("content-type"))
            if declared is None or declared not in allowed_types:
                return self._reject(
                    request,
                    SecurityStage.CONTENT_TYPE,
                    UnsupportedMediaTypeError(list(allowed_types)),
                    client_id,
                )

            # 5. Body size
            max_size = options.max_body_size or self._settings.max_body_size_bytes
            try:
                raw = await self._read_body(request, max_size)
            except _BodyTooLarge:
                return self._reject(
                    request,
                    SecurityStage.BODY_SIZE,
                    PayloadTooLargeError(max_size),
                    client_id,
                )

            # 6. Parse
            if raw:
                try:
                    body = self._parse(raw, declared)
                except (ValueError, RecursionError):
                    return self._reject(
                        request, SecurityStage.PARSE, InvalidJSONError(), client_id
                    )

            # 7. Injection scan + sanitize
            if body is not None and options.validate_input:
                result = scan(body, options.max_depth)
                if not result.valid:
                    audit_logger().warning(
                        "Potential injection attack detected",
                        stage=SecurityStage.INPUT_SCAN.value,
                        client_id=client_id,
                        method=method,
                        path=request.url.path,
                        detectors=sorted(set(result.detectors)),
                        finding_count=len(result.errors),
                    )
                    return self._reject(
                        request,
                        SecurityStage.INPUT_SCAN,
                        ContentSecurityError(
                            details=[{"finding": error} for error in result.errors]
                        ),
                        client_id,
                        errors=result.errors,
                    )
                body = sanitize_structured(body, options.max_depth)

        # 8. Auth gate
        identity: Any = None
        if options.require_auth:
            identity = await self._resolve_identity(request)
            if identity is None:
                return self._reject(
                    request, SecurityStage.AUTH, UnauthorizedError(), client_id
                )

        return SecurityVerdict(
            allowed=True, body=body, identity=identity, client_id=client_id
        )

    def _origin_allowed(self, request: Request, client_id: str) -> bool:
        origin = request_origin(request.headers)
        if origin is not None and origin in self._trusted_origins:
            return True

        if not self._settings.is_production:
            # Local development: browser tooling on localhost, and scripts
            # that send neither Origin nor Referer, are let through.
            if origin is None or is_local_origin(origin):
                logger.debug(
                    "CSRF check relaxed outside production",
                    environment=self._settings.environment,
                    origin=origin,
                    client_id=client_id,
                )
                return True

        audit_logger().warning(
            "CSRF validation failed",
            stage=SecurityStage.CSRF.value,
            client_id=client_id,
            method=request.method,
            path=request.url.path,
            origin=origin,
        )
        return False

    @staticmethod
    async def _read_body(request: Request, max_size: int) -> bytes:
        declared_length = request.headers.get("content-length")
        if declared_length is not None:
            try:
                if int(declared_length) > max_size:
                    raise _BodyTooLarge
            except ValueError:
                # Malformed header: fall through and count the bytes instead
                pass

        chunks: list[bytes] = []
        total = 0
        async for chunk in request.stream():
            total += len(chunk)
            if total > max_size:
                raise _BodyTooLarge
            chunks.append(chunk)
        return b"".join(chunks)

    @staticmethod
    def _parse(raw: bytes, declared: str) -> Any:
        if _is_json_media_type(declared):
            return json.loads(raw)
        return raw.decode("utf-8")

    async def _resolve_identity(self, request: Request) -> Any:
        if self._identity_resolver is None:
            raise RuntimeError("require_auth set but no identity resolver configured")
        try:
            return await self._identity_resolver(request)
        except UnauthorizedError:
            return None

    def _reject(
        self,
        request: Request,
        stage: SecurityStage,
        error: APIError,
        client_id: str,
        *,
        errors: list[str] | None = None,
    ) -> SecurityVerdict:
        logger.warning(
            "Request rejected",
            stage=stage.value,
            status_code=error.status_code,
            code=error.code,
            method=request.method,
            path=request.url.path,
            client_id=client_id,
        )
        return SecurityVerdict(
            allowed=False,
            errors=errors or [error.message],
            client_id=client_id,
            stage=stage,
            rejection=error,
        )
