"""Storage for signing link records.

Records are keyed by token digest; raw tokens are never stored. The
in-memory repository backs the demonstration API and tests. Production
deployments put SigningLinkStore in front of the contracts table.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

from signgate.security.tokens import utc_now


class ContractStatus(str, Enum):
    """Contract lifecycle states relevant to signing links."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    SIGNED = "signed"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# A used link still opens the contract in these states (read-only view).
VIEWABLE_AFTER_USE = frozenset(
    {ContractStatus.SIGNED, ContractStatus.PAID, ContractStatus.COMPLETED}
)


@dataclass
class SigningLinkRecord:
    """Stored side of a signing link.

    Attributes:
        contract_id: Contract the link opens.
        token_hash: Keyed digest of the raw token.
        expires_at: Link expiry, or None for a non-expiring link.
        status: Current contract status.
        used_at: When the link was used to sign, if it has been.
        created_at: When the link was issued.
    """

    contract_id: uuid.UUID
    token_hash: str
    expires_at: datetime | None
    status: ContractStatus = ContractStatus.SENT
    used_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class SigningAttempt:
    """One signing link resolution attempt, for abuse review."""

    client_id: str
    success: bool
    contract_id: uuid.UUID | None = None
    attempted_at: datetime = field(default_factory=utc_now)


class SigningLinkStore(Protocol):
    """Persistence interface the signing link service depends on."""

    def save(self, record: SigningLinkRecord) -> SigningLinkRecord | None: ...

    def find_by_hash(self, token_hash: str) -> SigningLinkRecord | None: ...

    def find_by_contract(self, contract_id: uuid.UUID) -> SigningLinkRecord | None: ...

    def mark_used(
        self,
        token_hash: str,
        *,
        status: ContractStatus = ContractStatus.SIGNED,
        used_at: datetime | None = None,
    ) -> SigningLinkRecord | None: ...

    def record_attempt(self, attempt: SigningAttempt) -> None: ...

    def attempts_for(self, client_id: str) -> list[SigningAttempt]: ...


class InMemorySigningLinkRepository:
    """Thread-safe in-memory SigningLinkStore.

    A contract has at most one live link. Saving a record for a contract
    supersedes the contract's previous link, whose digest stops resolving.
    State is per process and lost on restart.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, SigningLinkRecord] = {}
        self._by_contract: dict[uuid.UUID, str] = {}
        self._attempts: list[SigningAttempt] = []

    def save(self, record: SigningLinkRecord) -> SigningLinkRecord | None:
        """Store the contract's link, replacing any earlier one.

        Returns:
            The superseded record, or None if the contract had no link.
        """
        with self._lock:
            previous_hash = self._by_contract.get(record.contract_id)
            previous = (
                self._records.pop(previous_hash, None)
                if previous_hash is not None
                else None
            )
            self._records[record.token_hash] = record
            self._by_contract[record.contract_id] = record.token_hash
            return previous

    def find_by_hash(self, token_hash: str) -> SigningLinkRecord | None:
        with self._lock:
            return self._records.get(token_hash)

    def find_by_contract(self, contract_id: uuid.UUID) -> SigningLinkRecord | None:
        """The contract's live link, if it has one."""
        with self._lock:
            token_hash = self._by_contract.get(contract_id)
            return self._records.get(token_hash) if token_hash else None

    def mark_used(
        self,
        token_hash: str,
        *,
        status: ContractStatus = ContractStatus.SIGNED,
        used_at: datetime | None = None,
    ) -> SigningLinkRecord | None:
        """Stamp a link as used and move its contract to ``status``.

        Returns:
            The updated record, or None if no link has this digest.
        """
        with self._lock:
            record = self._records.get(token_hash)
            if record is None:
                return None
            record.used_at = used_at or utc_now()
            record.status = status
            return record

    def record_attempt(self, attempt: SigningAttempt) -> None:
        with self._lock:
            self._attempts.append(attempt)

    def attempts_for(self, client_id: str) -> list[SigningAttempt]:
        """Recorded attempts for a client identifier, oldest first."""
        with self._lock:
            return [a for a in self._attempts if a.client_id == client_id]
