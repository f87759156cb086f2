"""API error classes.

Two families:
- Client errors (4xx): malformed, oversized, wrong-type, disallowed-method,
  CSRF-failed, or rate-limited requests. Messages are safe to show callers.
- InternalError (500): unexpected failures. Logged in full server-side,
  rendered to callers as a generic message.

Every error renders as ``{"error": <title>, "message": <detail>}``.
``code`` is machine-readable and used for logging, not rendered.
"""


class APIError(Exception):
    """Base class for API errors.

    Attributes:
        code: Machine-readable error code (e.g., "RATE_LIMITED").
        error: Short human-readable title rendered as the "error" field.
        message: Human-readable detail rendered as the "message" field.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
        headers: Extra response headers (e.g., Retry-After).
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
        *,
        error: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.error = error or message
        self.headers = headers or {}
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400)."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
            error="Invalid request",
        )


class InvalidJSONError(APIError):
    """Request body is not well-formed JSON (400)."""

    def __init__(self, message: str = "Request body must be valid JSON") -> None:
        super().__init__(
            code="INVALID_JSON",
            message=message,
            status_code=400,
            error="Invalid JSON",
        )


class ContentSecurityError(APIError):
    """Request content matched an injection signature (400).

    The findings stay in ``details`` for server-side audit logging. They are
    never rendered, so probing callers learn nothing about which signature
    fired.
    """

    def __init__(
        self,
        message: str = "Request contains potentially dangerous content",
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="CONTENT_SECURITY_VIOLATION",
            message=message,
            status_code=400,
            details=details,
            error="Invalid input",
        )


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
            error="Unauthorized",
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403)."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
            error="Forbidden",
        )


class CSRFError(ForbiddenError):
    """State-changing request from an unexpected origin (403)."""

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="CSRF_FAILED",
            message="CSRF validation failed",
            status_code=403,
            error="Invalid request origin",
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Use when requested resource doesn't exist OR doesn't belong to the caller.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
            error="Not found",
        )


class MethodNotAllowedError(APIError):
    """HTTP method not in the endpoint's allow-list (405)."""

    def __init__(self, method: str, allowed: list[str]) -> None:
        super().__init__(
            code="METHOD_NOT_ALLOWED",
            message=f"Method {method} is not allowed. Allowed: {', '.join(allowed)}",
            status_code=405,
            error="Method not allowed",
            headers={"Allow": ", ".join(allowed)},
        )


class PayloadTooLargeError(APIError):
    """Request body exceeds the configured ceiling (413)."""

    def __init__(self, max_size: int) -> None:
        super().__init__(
            code="PAYLOAD_TOO_LARGE",
            message=f"Request body exceeds maximum size of {max_size} bytes",
            status_code=413,
            error="Payload too large",
        )


class UnsupportedMediaTypeError(APIError):
    """Declared content type not in the allow-list (415)."""

    def __init__(self, allowed: list[str]) -> None:
        super().__init__(
            code="UNSUPPORTED_MEDIA_TYPE",
            message=f"Expected one of: {', '.join(allowed)}",
            status_code=415,
            error="Invalid content type",
        )


class InvalidStateError(APIError):
    """Request is well-formed but the resource state forbids it (422)."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="INVALID_STATE_TRANSITION",
            message=message,
            status_code=422,
            error="Invalid state",
        )


class RateLimitedError(APIError):
    """Too many requests for this identifier (429).

    Retry-After is a fixed hint; callers retry on a later, independent request.
    """

    def __init__(
        self,
        message: str = "Too many requests. Please try again later.",
        retry_after: int = 60,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(
            code="RATE_LIMITED",
            message=message,
            status_code=429,
            error="Rate limit exceeded",
            headers={"Retry-After": str(retry_after)},
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
            error="Internal server error",
        )
