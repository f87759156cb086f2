"""Signing links API router.

POST /signing-links issues a link for a contract (authenticated, CSRF
checked, body scanned). GET /sign/{token} resolves a link for the public
signing page and POST /sign/{token} consumes it once the signer signs. The
service rate limits both per client in the ``signing:`` scope, so the
pipeline's own limiter stage is off for that route.

The sign route accepts every method at the routing layer so that the
security pipeline, not the router, answers disallowed methods with the
standard 405 envelope.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Request, status
from pydantic import ValidationError as PydanticValidationError

from signgate.api.deps import get_signing_link_service, secure_endpoint
from signgate.core.errors import ValidationError
from signgate.core.responses import DataResponse
from signgate.schemas.signing_links import (
    CreateSigningLinkRequest,
    SigningLinkCreated,
    SigningLinkView,
)
from signgate.security.pipeline import SecurityOptions, SecurityVerdict
from signgate.security.tokens import TOKEN_HEX_LENGTH
from signgate.services.signing_links import SigningLinkService

router = APIRouter()

_CREATE_OPTIONS = SecurityOptions(
    allowed_methods=("POST",),
    rate_limit_scope="signing-links",
    require_auth=True,
)

_SIGN_OPTIONS = SecurityOptions(
    allowed_methods=("GET", "POST"),
    rate_limit=False,
)

# Generous upper bound; lookups for anything longer are pointless
_MAX_TOKEN_PATH_LENGTH = TOKEN_HEX_LENGTH * 2

Service = Annotated[SigningLinkService, Depends(get_signing_link_service)]


@router.post(
    "/signing-links",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[SigningLinkCreated],
)
async def create_signing_link(
    verdict: Annotated[SecurityVerdict, Depends(secure_endpoint(_CREATE_OPTIONS))],
    service: Service,
) -> DataResponse[SigningLinkCreated]:
    """Issue a signing link for a contract.

    Returns:
        The signing URL and its expiry. The raw token is not retrievable later.
    """
    try:
        payload = CreateSigningLinkRequest.model_validate(verdict.body or {})
    except PydanticValidationError as exc:
        raise ValidationError(
            "Request validation failed",
            details=[
                {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
                for e in exc.errors()
            ],
        ) from exc

    token, url = service.create_link(
        payload.contract_id,
        expires=payload.expires,
        days=payload.expires_in_days,
    )
    return DataResponse(
        data=SigningLinkCreated(
            contract_id=payload.contract_id,
            url=url,
            expires_at=token.expires_at,
        )
    )


@router.api_route(
    "/sign/{token}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    response_model=DataResponse[SigningLinkView],
)
async def signing_link(
    request: Request,
    token: Annotated[str, Path(min_length=1, max_length=_MAX_TOKEN_PATH_LENGTH)],
    verdict: Annotated[SecurityVerdict, Depends(secure_endpoint(_SIGN_OPTIONS))],
    service: Service,
) -> DataResponse[SigningLinkView]:
    """Resolve a signing link (GET) or consume it to sign the contract (POST).

    Signature data is not validated here; the route only checks that the
    link is valid and spends it once.
    """
    if request.method == "POST":
        record = service.consume(token, verdict.client_id)
    else:
        record = service.resolve(token, verdict.client_id)
    return DataResponse(data=SigningLinkView.from_record(record))
