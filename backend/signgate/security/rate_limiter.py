"""In-memory fixed-window rate limiter.

Each identifier (client IP, or a business key such as a phone number) gets a
counter that resets wholesale when its window ends. Windows start at the
first request, not on clock boundaries, so a burst straddling a reset can
admit up to 2 x max_attempts. That approximation is accepted; swap in a
token bucket behind check_and_consume() if stricter fairness is needed.

Concurrency: the store is the only shared mutable state in the request path.
Identifiers hash onto shards, each a dict guarded by its own lock, so the
read-check-increment in check_and_consume() is atomic for one identifier
while unrelated identifiers rarely contend. Critical sections are O(1) and
never await, so the limiter is safe from threads and from the event loop.

State is per process and lost on restart. Multi-instance deployments need a
shared store.
"""

import threading
import zlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from signgate.core.config import Settings
from signgate.security.tokens import utc_now

DEFAULT_WINDOW = timedelta(minutes=15)
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_SHARDS = 16


@dataclass
class RateLimitEntry:
    """Request count for one identifier inside its current window."""

    count: int
    reset_at: datetime


class _Shard:
    __slots__ = ("entries", "lock")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, RateLimitEntry] = {}


class RateLimiter:
    """Per-identifier fixed-window request counter.

    Args:
        window: Window length used when a call site does not override it.
        max_attempts: Requests admitted per window by default.
        shards: Number of independently locked partitions.
        clock: Returns the current aware datetime. Injected by tests.
    """

    def __init__(
        self,
        *,
        window: timedelta = DEFAULT_WINDOW,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        shards: int = DEFAULT_SHARDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if shards <= 0:
            raise ValueError("shards must be positive")
        self.window = window
        self.max_attempts = max_attempts
        self._clock = clock
        self._shards = tuple(_Shard() for _ in range(shards))

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Callable[[], datetime] = utc_now
    ) -> "RateLimiter":
        """Build a limiter with the configured defaults."""
        return cls(
            window=timedelta(minutes=settings.rate_limit_window_minutes),
            max_attempts=settings.rate_limit_max_attempts,
            shards=settings.rate_limit_shards,
            clock=clock,
        )

    def _shard_for(self, identifier: str) -> _Shard:
        # crc32 is stable across processes, unlike hash() on str
        index = zlib.crc32(identifier.encode("utf-8", "surrogatepass"))
        return self._shards[index % len(self._shards)]

    def check_and_consume(
        self,
        identifier: str,
        window: timedelta | None = None,
        max_attempts: int | None = None,
    ) -> bool:
        """Record one request and report whether the identifier is limited.

        A limited request is not counted.

        Args:
            identifier: Rate limit key.
            window: Window length for a fresh entry (default: limiter's).
            max_attempts: Requests admitted per window (default: limiter's).

        Returns:
            True if the request must be rejected, False if admitted.
        """
        window = self.window if window is None else window
        limit = self.max_attempts if max_attempts is None else max_attempts
        shard = self._shard_for(identifier)

        with shard.lock:
            now = self._clock()
            entry = shard.entries.get(identifier)
            if entry is None or now > entry.reset_at:
                shard.entries[identifier] = RateLimitEntry(
                    count=1, reset_at=now + window
                )
                return False
            if entry.count >= limit:
                return True
            entry.count += 1
            return False

    def remaining(self, identifier: str, max_attempts: int | None = None) -> int:
        """Requests still admitted for an identifier in its current window.

        Args:
            identifier: Rate limit key.
            max_attempts: Limit to measure against (default: limiter's).

        Returns:
            max_attempts when there is no live entry, else
            max(0, max_attempts - count).
        """
        limit = self.max_attempts if max_attempts is None else max_attempts
        shard = self._shard_for(identifier)
        with shard.lock:
            entry = shard.entries.get(identifier)
            if entry is None or self._clock() > entry.reset_at:
                return limit
            return max(0, limit - entry.count)

    def reset_at(self, identifier: str) -> datetime | None:
        """When the identifier's live window ends, or None if there is none."""
        shard = self._shard_for(identifier)
        with shard.lock:
            entry = shard.entries.get(identifier)
            if entry is None or self._clock() > entry.reset_at:
                return None
            return entry.reset_at

    def clear(self, identifier: str) -> None:
        """Drop an identifier's entry (administrative reset)."""
        shard = self._shard_for(identifier)
        with shard.lock:
            shard.entries.pop(identifier, None)

    def clear_all(self) -> None:
        """Drop every entry in every shard."""
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total
