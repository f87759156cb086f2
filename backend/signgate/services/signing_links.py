"""Signing link issue and resolution.

Exchanges a raw token from a signing URL for its contract record:

    rate limit (signing:<client>) -> hash -> lookup -> constant-time verify
    -> expiry -> cancelled -> already used

A contract has one live link: issuing a new one supersedes the previous
link, which then resolves like an unknown token. Consuming a link stamps it
used, making it one-time. Every outcome is recorded as a SigningAttempt.
Links that were used to sign keep opening the contract read-only once it is
signed, paid, or completed. Raw token values never reach the logs.
"""

import uuid
from datetime import timedelta
from typing import NoReturn

import structlog

from signgate.core.errors import APIError, InvalidStateError, RateLimitedError
from signgate.core.logging_config import audit_logger
from signgate.repositories.signing_link_repository import (
    VIEWABLE_AFTER_USE,
    ContractStatus,
    SigningAttempt,
    SigningLinkRecord,
    SigningLinkStore,
)
from signgate.security.rate_limiter import RateLimiter
from signgate.security.tokens import Clock, SigningToken, TokenAuthority, utc_now

logger = structlog.get_logger()

RATE_LIMIT_SCOPE = "signing"
SIGNING_RATE_LIMIT_WINDOW = timedelta(minutes=15)
SIGNING_RATE_LIMIT_MAX_ATTEMPTS = 5

# Contract states a link can still be consumed from
SIGNABLE_STATUSES = frozenset(
    {ContractStatus.DRAFT, ContractStatus.SENT, ContractStatus.VIEWED}
)


class SigningLinkError(APIError):
    """Signing link cannot be used (404).

    All resolution failures share one status so callers cannot tell an
    unknown token from a known one by status code alone.
    """

    def __init__(self, message: str = "Invalid token", reason: str = "invalid") -> None:
        self.reason = reason
        super().__init__(
            code="SIGNING_LINK_UNAVAILABLE",
            message=message,
            status_code=404,
            error="Contract not found",
        )


class SigningLinkService:
    """Issue signing links and resolve them back to contracts.

    Args:
        authority: Token generation and verification.
        store: Persistence for link records and attempts.
        limiter: Shared rate limiter (keys live in the ``signing:`` scope).
        public_base_url: Origin used to build signing URLs.
        window: Rate limit window for resolution attempts.
        max_attempts: Resolution attempts admitted per window.
        rate_limit: False disables the per-client attempt limit.
        clock: Time source for issue and use timestamps.
    """

    def __init__(
        self,
        authority: TokenAuthority,
        store: SigningLinkStore,
        limiter: RateLimiter,
        *,
        public_base_url: str = "http://localhost:3000",
        window: timedelta = SIGNING_RATE_LIMIT_WINDOW,
        max_attempts: int = SIGNING_RATE_LIMIT_MAX_ATTEMPTS,
        rate_limit: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self._authority = authority
        self._store = store
        self._limiter = limiter
        self._public_base_url = public_base_url
        self._window = window
        self._max_attempts = max_attempts
        self._rate_limit = rate_limit
        self._clock = clock

    def create_link(
        self,
        contract_id: uuid.UUID,
        *,
        expires: bool = True,
        days: int | None = None,
    ) -> tuple[SigningToken, str]:
        """Issue a signing link for a contract.

        Args:
            contract_id: Contract the link opens.
            expires: False issues a non-expiring link.
            days: Lifetime in days (default from the authority).

        Returns:
            Tuple of (token, signing URL). The raw token is not stored.
        """
        token = self._authority.issue(days, expires=expires)
        current = self._store.find_by_contract(contract_id)
        superseded = self._store.save(
            SigningLinkRecord(
                contract_id=contract_id,
                token_hash=token.hash,
                expires_at=token.expires_at,
                status=current.status if current else ContractStatus.SENT,
                created_at=self._clock(),
            )
        )
        logger.info(
            "Signing link issued",
            contract_id=str(contract_id),
            expires_at=token.expires_at.isoformat() if token.expires_at else None,
            superseded=superseded is not None,
        )
        return token, self._authority.signing_url(self._public_base_url, token.raw)

    def resolve(self, raw: str, client_id: str) -> SigningLinkRecord:
        """Resolve a raw token to its link record.

        Args:
            raw: Token from the signing URL.
            client_id: Client identifier for rate limiting and attempt logs.

        Returns:
            The link record.

        Raises:
            RateLimitedError: Client exceeded its signing attempt budget.
            SigningLinkError: Token unknown, expired, cancelled, or used.
        """
        key = f"{RATE_LIMIT_SCOPE}:{client_id}"
        if self._rate_limit and self._limiter.check_and_consume(
            key, self._window, self._max_attempts
        ):
            self._record_attempt(client_id, success=False)
            self._reject(client_id, None, "rate_limited")
            raise RateLimitedError("Too many attempts. Please try again later.")

        token_hash = self._authority.hash(raw) if isinstance(raw, str) else ""
        record = self._store.find_by_hash(token_hash) if token_hash else None

        if record is None or not self._authority.verify(raw, record.token_hash):
            self._fail(client_id, None, SigningLinkError())

        if self._authority.is_expired(record.expires_at):
            self._fail(
                client_id,
                record.contract_id,
                SigningLinkError("This signing link has expired", reason="expired"),
            )

        if record.status == ContractStatus.CANCELLED:
            self._fail(
                client_id,
                record.contract_id,
                SigningLinkError("This contract has been cancelled", reason="cancelled"),
            )

        if record.used_at is not None and record.status not in VIEWABLE_AFTER_USE:
            self._fail(
                client_id,
                record.contract_id,
                SigningLinkError(
                    "This signing link has already been used", reason="already_used"
                ),
            )

        self._record_attempt(client_id, success=True, contract_id=record.contract_id)
        return record

    def consume(
        self,
        raw: str,
        client_id: str,
        *,
        status: ContractStatus = ContractStatus.SIGNED,
    ) -> SigningLinkRecord:
        """Resolve a link and stamp it used, moving the contract to ``status``.

        A consumed link keeps opening the contract read-only once it is
        signed, paid, or completed; any other use fails as already used.

        Raises:
            RateLimitedError: Client exceeded its signing attempt budget.
            SigningLinkError: Token unknown, expired, cancelled, or used.
            InvalidStateError: Contract is past the point of signing.
        """
        record = self.resolve(raw, client_id)
        if record.used_at is not None:
            self._reject(client_id, record.contract_id, "already_used")
            raise SigningLinkError(
                "This signing link has already been used", reason="already_used"
            )
        if record.status not in SIGNABLE_STATUSES:
            self._reject(client_id, record.contract_id, "not_signable")
            raise InvalidStateError("Contract already signed or cannot be signed")

        used = self._store.mark_used(
            record.token_hash, status=status, used_at=self._clock()
        )
        if used is None:
            # Superseded between resolve and mark_used
            self._fail(client_id, record.contract_id, SigningLinkError())
        logger.info(
            "Signing link used",
            contract_id=str(used.contract_id),
            status=used.status.value,
        )
        return used

    def _fail(
        self,
        client_id: str,
        contract_id: uuid.UUID | None,
        error: SigningLinkError,
    ) -> NoReturn:
        self._record_attempt(client_id, success=False, contract_id=contract_id)
        self._reject(client_id, contract_id, error.reason)
        raise error

    def _record_attempt(
        self,
        client_id: str,
        *,
        success: bool,
        contract_id: uuid.UUID | None = None,
    ) -> None:
        self._store.record_attempt(
            SigningAttempt(
                client_id=client_id,
                success=success,
                contract_id=contract_id,
                attempted_at=self._clock(),
            )
        )

    @staticmethod
    def _reject(client_id: str, contract_id: uuid.UUID | None, reason: str) -> None:
        audit_logger().warning(
            "Signing link rejected",
            client_id=client_id,
            contract_id=str(contract_id) if contract_id else None,
            reason=reason,
        )
