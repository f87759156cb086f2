"""Signing token generation, hashing, and verification.

A signing token lets an unauthenticated party open and sign exactly one
contract. The raw token travels to the client once, inside the signing URL;
only its keyed digest is stored.

Construction:
- raw: 32 bytes from ``secrets`` rendered as 64 lowercase hex chars (URL-safe,
  no further encoding in links)
- hash: sha256(raw || server secret), hex. The secret never lives in the
  data store, so a leaked table cannot be brute-forced offline.
- verify: recompute and compare with ``hmac.compare_digest``

Rotating the secret invalidates every previously issued link.

Tokens issued without an expiry never expire. These are legacy links kept
working on purpose; new links should always carry an expiry.
"""

import hashlib
import hmac
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from signgate.core.config import Settings

TOKEN_BYTES = 32
TOKEN_HEX_LENGTH = TOKEN_BYTES * 2
DEFAULT_EXPIRY_DAYS = 7

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class SigningToken:
    """A freshly issued signing token.

    Attributes:
        raw: Secret to embed in the signing URL. Never persist or log it.
        hash: Keyed digest to store alongside the contract.
        expires_at: Expiry timestamp, or None for a non-expiring link.
    """

    raw: str
    hash: str
    expires_at: datetime | None

    def __repr__(self) -> str:
        # Keep the raw secret out of tracebacks and debug logs.
        return f"SigningToken(hash={self.hash[:12]}..., expires_at={self.expires_at!r})"


class TokenAuthority:
    """Issues and verifies signing tokens under one server secret.

    Stateless apart from the secret and clock; safe to share across
    requests and threads.

    Args:
        secret: Server-held secret mixed into every digest.
        default_expiry_days: Lifetime used when expiry() gets no argument.
        clock: Returns the current aware datetime. Injected by tests.
    """

    def __init__(
        self,
        secret: str,
        *,
        default_expiry_days: int = DEFAULT_EXPIRY_DAYS,
        clock: Clock = utc_now,
    ) -> None:
        if not secret:
            raise ValueError("TokenAuthority requires a non-empty secret")
        self._secret = secret
        self._default_expiry_days = default_expiry_days
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Clock = utc_now
    ) -> "TokenAuthority":
        """Build an authority from application settings."""
        return cls(
            settings.signing_token_secret.get_secret_value(),
            default_expiry_days=settings.signing_token_expiry_days,
            clock=clock,
        )

    def generate(self) -> str:
        """Generate a new raw token (256 bits of entropy, 64 hex chars)."""
        return secrets.token_hex(TOKEN_BYTES)

    def hash(self, raw: str) -> str:
        """Derive the storable digest for a raw token.

        Args:
            raw: Raw token as received in the signing URL.

        Returns:
            Hex-encoded sha256 of the token followed by the server secret.
        """
        return hashlib.sha256((raw + self._secret).encode("utf-8")).hexdigest()

    def verify(self, raw: str, stored_hash: str) -> bool:
        """Check a candidate token against a stored digest in constant time.

        Never raises. Malformed input, undecodable digests, and length
        mismatches all return False; compare_digest only leaks whether the
        lengths differ.

        Args:
            raw: Candidate raw token.
            stored_hash: Digest previously produced by hash().

        Returns:
            True if the candidate hashes to the stored digest.
        """
        if not isinstance(raw, str) or not isinstance(stored_hash, str):
            return False
        try:
            computed = bytes.fromhex(self.hash(raw))
            stored = bytes.fromhex(stored_hash)
        except (ValueError, UnicodeEncodeError):
            return False
        return hmac.compare_digest(computed, stored)

    def expiry(self, days: int | None = None) -> datetime:
        """Compute an expiry timestamp ``days`` from now.

        Args:
            days: Lifetime in days. Defaults to the authority's default (7).

        Returns:
            Aware UTC datetime.
        """
        lifetime = self._default_expiry_days if days is None else days
        return self._clock() + timedelta(days=lifetime)

    def is_expired(self, expires_at: datetime | None) -> bool:
        """Whether a token with this expiry can no longer be used.

        Args:
            expires_at: Stored expiry. None means the link never expires.
                Naive datetimes are interpreted as UTC.

        Returns:
            False when expires_at is None, otherwise now > expires_at.
        """
        if expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return self._clock() > expires_at

    def issue(self, days: int | None = None, *, expires: bool = True) -> SigningToken:
        """Generate a token together with its digest and expiry.

        Args:
            days: Lifetime in days (default from the authority).
            expires: False issues a non-expiring (legacy-style) link.

        Returns:
            SigningToken with raw, hash, and expires_at populated.
        """
        raw = self.generate()
        return SigningToken(
            raw=raw,
            hash=self.hash(raw),
            expires_at=self.expiry(days) if expires else None,
        )

    @staticmethod
    def signing_url(base_url: str, raw: str) -> str:
        """Build the public signing URL for a raw token.

        The token is hex, so it goes into the path verbatim. Callers must
        not percent-encode it again.
        """
        return f"{base_url.rstrip('/')}/sign/{raw}"
