"""Signing link request/response schemas.

1. POST /signing-links: issue a link for a contract (authenticated)
2. GET /sign/{token}: resolve a link to its contract (public)
3. POST /sign/{token}: consume a link (public, one-time)
4. GET /admin/signing-attempts/{identifier}: attempt history (authenticated)
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from signgate.repositories.signing_link_repository import (
    VIEWABLE_AFTER_USE,
    SigningAttempt,
    SigningLinkRecord,
)

# =============================================================================
# Request Schemas
# =============================================================================


class CreateSigningLinkRequest(BaseModel):
    """Request body for POST /signing-links."""

    model_config = ConfigDict(extra="forbid")

    contract_id: uuid.UUID
    expires: bool = True
    expires_in_days: int | None = Field(default=None, ge=1, le=365)


# =============================================================================
# Response Schemas
# =============================================================================


class SigningLinkCreated(BaseModel):
    """Issued link. The URL carries the raw token and is returned only once."""

    contract_id: uuid.UUID
    url: str
    expires_at: datetime | None


class SigningLinkView(BaseModel):
    """Resolved link as shown to the signer."""

    contract_id: uuid.UUID
    status: str
    expires_at: datetime | None
    used_at: datetime | None
    read_only: bool

    @classmethod
    def from_record(cls, record: SigningLinkRecord) -> "SigningLinkView":
        return cls(
            contract_id=record.contract_id,
            status=record.status.value,
            expires_at=record.expires_at,
            used_at=record.used_at,
            read_only=record.used_at is not None
            or record.status in VIEWABLE_AFTER_USE,
        )


class SigningAttemptView(BaseModel):
    """One recorded signing link attempt."""

    client_id: str
    success: bool
    contract_id: uuid.UUID | None
    attempted_at: datetime

    @classmethod
    def from_attempt(cls, attempt: SigningAttempt) -> "SigningAttemptView":
        return cls(
            client_id=attempt.client_id,
            success=attempt.success,
            contract_id=attempt.contract_id,
            attempted_at=attempt.attempted_at,
        )
