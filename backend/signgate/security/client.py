"""Client identification and origin helpers.

Trust boundary: the client identifier comes from proxy headers. Behind a
trusted reverse proxy that overwrites them, this is the real client IP.
Without one, any caller can spoof them and pick their own rate limit bucket.
Deploy behind a proxy that sets X-Forwarded-For.
"""

from urllib.parse import urlsplit

from starlette.datastructures import Headers

UNKNOWN_CLIENT = "unknown"

_DEFAULT_PORTS = {"http": 80, "https": 443}
_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "[::1]"})


def get_client_identifier(headers: Headers) -> str:
    """Derive the client identifier used for rate limiting and audit logs.

    Precedence: first entry of X-Forwarded-For, then X-Real-IP, else
    "unknown".

    Args:
        headers: Request headers.

    Returns:
        Client identifier string.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_CLIENT


def normalize_origin(value: str | None) -> str | None:
    """Reduce a URL or Origin header to ``scheme://host[:port]``.

    Scheme and host are lowercased and default ports dropped, so
    ``HTTPS://App.Example:443/`` and ``https://app.example`` compare equal.

    Returns:
        Normalized origin, or None if value is empty, "null", or has no
        scheme or host.
    """
    if not value or value.strip().lower() == "null":
        return None
    try:
        parts = urlsplit(value.strip())
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is None or port == _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def request_origin(headers: Headers) -> str | None:
    """Origin of a request: the Origin header, else the Referer's origin."""
    origin = headers.get("origin")
    if origin:
        return normalize_origin(origin)
    return normalize_origin(headers.get("referer"))


def is_local_origin(origin: str) -> bool:
    """Whether a normalized origin points at the developer's machine."""
    host = urlsplit(origin).hostname or ""
    return host.lower() in _LOCAL_HOSTS
