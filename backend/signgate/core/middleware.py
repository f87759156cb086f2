"""HTTP middleware: response security headers and scanner blocking.

SecurityHeadersMiddleware adds a fixed header set to every response,
including error responses rendered by the security pipeline.

SuspiciousAgentMiddleware is a raw ASGI middleware (not BaseHTTPMiddleware)
so it can answer before the app or any other middleware touches the request.
It blocks known scanner user agents and user agents carrying traversal or
script markup with a bare 403.
"""

import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from signgate.core.logging_config import audit_logger
from signgate.security.client import get_client_identifier

PERMISSIONS_POLICY = "camera=(), microphone=(), geolocation=()"
HSTS_VALUE = "max-age=63072000; includeSubDomains; preload"

_SUSPICIOUS_AGENT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"sqlmap", re.IGNORECASE),
    re.compile(r"nikto", re.IGNORECASE),
    re.compile(r"masscan", re.IGNORECASE),
    re.compile(r"nmap", re.IGNORECASE),
    re.compile(r"\.\."),
    re.compile(r"<script", re.IGNORECASE),
)

_LOGGED_AGENT_LENGTH = 100


def is_suspicious_user_agent(user_agent: str) -> bool:
    """Whether a User-Agent matches a scanner or injection marker."""
    return any(pattern.search(user_agent) for pattern in _SUSPICIOUS_AGENT_PATTERNS)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses.

    Headers added:
    - X-Content-Type-Options: Prevents MIME sniffing
    - X-Frame-Options: Same-origin framing only (signing page embeds)
    - X-XSS-Protection: Enables XSS filtering in older browsers
    - Referrer-Policy: Keeps signing tokens out of cross-origin referrers
    - Permissions-Policy: Denies camera, microphone, geolocation
    - Strict-Transport-Security: Forces HTTPS (production only)
    """

    def __init__(self, app: ASGIApp, *, production: bool = False) -> None:
        super().__init__(app)
        self.production = production

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Add security headers to response."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = PERMISSIONS_POLICY

        # Signing responses may carry contract data
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"

        # HSTS only in production (assumes HTTPS via reverse proxy)
        if self.production:
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response


class SuspiciousAgentMiddleware:
    """Reject requests whose User-Agent identifies an attack tool."""

    def __init__(self, app: ASGIApp) -> None:
        """Initialize with the next ASGI application.

        Args:
            app: The next ASGI application in the middleware chain.
        """
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        user_agent = request.headers.get("user-agent", "")
        if user_agent and is_suspicious_user_agent(user_agent):
            audit_logger().warning(
                "Suspicious request blocked",
                client_id=get_client_identifier(request.headers),
                path=scope.get("path", ""),
                user_agent=user_agent[:_LOGGED_AGENT_LENGTH],
            )
            response = PlainTextResponse("Forbidden", status_code=403)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
