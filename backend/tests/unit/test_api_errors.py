"""Tests for API error classes and their rendered envelope."""

from signgate.core.errors import (
    APIError,
    ContentSecurityError,
    CSRFError,
    ForbiddenError,
    InternalError,
    InvalidJSONError,
    InvalidStateError,
    MethodNotAllowedError,
    NotFoundError,
    PayloadTooLargeError,
    RateLimitedError,
    UnauthorizedError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from signgate.core.responses import ErrorResponse


class TestAPIError:
    """Tests for base APIError class."""

    def test_api_error_has_required_attributes(self):
        """APIError should have code, message, status_code, details."""
        error = APIError(
            code="TEST_ERROR",
            message="Test message",
            status_code=418,
            details=[{"field": "test"}],
        )
        assert error.code == "TEST_ERROR"
        assert error.message == "Test message"
        assert error.status_code == 418
        assert error.details == [{"field": "test"}]

    def test_api_error_defaults_to_500(self):
        """APIError should default to 500 status code."""
        error = APIError(code="TEST", message="Test")
        assert error.status_code == 500
        assert error.headers == {}

    def test_title_defaults_to_message(self):
        """Without an explicit title, the message doubles as the title."""
        error = APIError(code="TEST", message="Test")
        assert error.error == "Test"

    def test_api_error_is_exception(self):
        """APIError should be an Exception subclass."""
        error = APIError(code="TEST", message="Test")
        assert isinstance(error, Exception)
        assert str(error) == "Test"


class TestStatusCodes:
    """Each subclass maps to its HTTP status."""

    def test_client_error_statuses(self):
        """Client errors carry their documented status codes."""
        assert ValidationError("bad").status_code == 400
        assert InvalidJSONError().status_code == 400
        assert ContentSecurityError().status_code == 400
        assert UnauthorizedError().status_code == 401
        assert ForbiddenError().status_code == 403
        assert CSRFError().status_code == 403
        assert NotFoundError("Contract").status_code == 404
        assert MethodNotAllowedError("PUT", ["GET"]).status_code == 405
        assert PayloadTooLargeError(1024).status_code == 413
        assert UnsupportedMediaTypeError(["application/json"]).status_code == 415
        assert InvalidStateError("nope").status_code == 422
        assert RateLimitedError().status_code == 429

    def test_internal_error_is_500(self):
        """InternalError is the only 5xx."""
        error = InternalError()
        assert error.status_code == 500
        assert error.message == "An unexpected error occurred"

    def test_csrf_error_is_forbidden(self):
        """CSRF failures are a kind of 403 Forbidden."""
        assert isinstance(CSRFError(), ForbiddenError)
        assert CSRFError().code == "CSRF_FAILED"


class TestHeaders:
    """Errors that need response headers carry them."""

    def test_rate_limited_sets_retry_after_60(self):
        """429 responses tell the caller to retry after 60 seconds."""
        error = RateLimitedError()
        assert error.retry_after == 60
        assert error.headers == {"Retry-After": "60"}

    def test_method_not_allowed_sets_allow(self):
        """405 responses list the allowed methods."""
        error = MethodNotAllowedError("DELETE", ["GET", "POST"])
        assert error.headers == {"Allow": "GET, POST"}
        assert "DELETE" in error.message


class TestErrorResponse:
    """Errors render as {"error": title, "message": detail}."""

    def test_renders_title_and_message(self):
        """Title and detail both render when they differ."""
        content = ErrorResponse.from_api_error(RateLimitedError()).to_content()
        assert content == {
            "error": "Rate limit exceeded",
            "message": "Too many requests. Please try again later.",
        }

    def test_omits_message_equal_to_title(self):
        """A message identical to the title is not repeated."""
        error = APIError(code="X", message="Same", status_code=400)
        assert ErrorResponse.from_api_error(error).to_content() == {"error": "Same"}

    def test_content_security_details_not_rendered(self):
        """Scanner findings never reach the rendered body."""
        error = ContentSecurityError(details=[{"finding": "SQL injection at $.q"}])
        content = ErrorResponse.from_api_error(error).to_content()
        assert content == {
            "error": "Invalid input",
            "message": "Request contains potentially dangerous content",
        }

    def test_csrf_title(self):
        """CSRF rejections render the origin title."""
        content = ErrorResponse.from_api_error(CSRFError()).to_content()
        assert content["error"] == "Invalid request origin"
