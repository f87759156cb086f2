"""Admin API router.

Administrative rate limit reset, for support staff unblocking a client that
tripped a limit legitimately (shared office IP, retried form submissions),
and the signing attempt history used to tell such clients from attackers.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, Response, status

from signgate.api.deps import get_rate_limiter, get_signing_link_store, secure_endpoint
from signgate.core.errors import ValidationError
from signgate.core.logging_config import audit_logger
from signgate.core.responses import DataResponse
from signgate.repositories.signing_link_repository import SigningLinkStore
from signgate.schemas.signing_links import SigningAttemptView
from signgate.security.pipeline import SecurityOptions, SecurityVerdict
from signgate.security.rate_limiter import RateLimiter
from signgate.security.validators import sanitize_rate_limit_key

router = APIRouter()

# Scopes cleared when the caller does not name one
KNOWN_RATE_LIMIT_SCOPES = ("api", "signing", "signing-links")

_CLEAR_OPTIONS = SecurityOptions(
    allowed_methods=("DELETE",),
    rate_limit_scope="admin",
    require_auth=True,
)

_ATTEMPTS_OPTIONS = SecurityOptions(
    allowed_methods=("GET",),
    rate_limit_scope="admin",
    require_auth=True,
)


@router.delete(
    "/admin/rate-limits/{identifier}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def clear_rate_limit(
    identifier: Annotated[str, Path(min_length=1, max_length=255)],
    verdict: Annotated[SecurityVerdict, Depends(secure_endpoint(_CLEAR_OPTIONS))],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    scope: Annotated[
        str | None,
        Query(max_length=50, description="Limit scope (default: all known scopes)"),
    ] = None,
) -> Response:
    """Clear an identifier's rate limit entries.

    Args:
        identifier: Client identifier or business key (e.g., an IP address).
        scope: Only clear this scope.
    """
    safe_identifier = sanitize_rate_limit_key(identifier)
    if not safe_identifier:
        raise ValidationError("Identifier contains no usable characters")

    scopes = (scope,) if scope else KNOWN_RATE_LIMIT_SCOPES
    for name in scopes:
        limiter.clear(f"{sanitize_rate_limit_key(name)}:{safe_identifier}")

    audit_logger().info(
        "Rate limit cleared",
        identifier=safe_identifier,
        scopes=list(scopes),
        actor=verdict.identity,
        client_id=verdict.client_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/admin/signing-attempts/{identifier}",
    response_model=DataResponse[list[SigningAttemptView]],
)
async def list_signing_attempts(
    identifier: Annotated[str, Path(min_length=1, max_length=255)],
    _verdict: Annotated[SecurityVerdict, Depends(secure_endpoint(_ATTEMPTS_OPTIONS))],
    store: Annotated[SigningLinkStore, Depends(get_signing_link_store)],
) -> DataResponse[list[SigningAttemptView]]:
    """List a client's signing link attempts, oldest first."""
    safe_identifier = sanitize_rate_limit_key(identifier)
    if not safe_identifier:
        raise ValidationError("Identifier contains no usable characters")
    return DataResponse(
        data=[
            SigningAttemptView.from_attempt(a)
            for a in store.attempts_for(safe_identifier)
        ]
    )
