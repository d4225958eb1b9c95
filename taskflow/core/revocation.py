"""Token revocation (logout blacklist).

The registry keys entries by a SHA256 fingerprint of the raw token and keeps them
until the token would have expired anyway. The default store is process-local and
bounded: inserting into a full store evicts the oldest entry. A shared store (e.g.
Redis) for multi-node deployments only needs to implement ``RevocationStore``.
"""

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

from taskflow.config import settings
from taskflow.core.auth import token_fingerprint
from taskflow.core.metrics import REVOCATION_EVICTIONS, REVOKED_TOKENS, TOKEN_REVOCATIONS

logger = logging.getLogger(__name__)


class RevocationStore(Protocol):
    def blacklist(self, token: str, ttl_seconds: int | None = None) -> None: ...

    def consume(self, token: str, ttl_seconds: int | None = None) -> bool: ...

    def is_revoked(self, token: str) -> bool: ...

    def sweep(self) -> int: ...

    def __len__(self) -> int: ...


class InMemoryRevocationStore:
    """Bounded fingerprint -> expiry map guarded by a single lock.

    Dict insertion order doubles as eviction order: the first key is the oldest.
    """

    def __init__(
        self,
        max_size: int,
        default_ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expiry(self, ttl_seconds: int | None) -> float:
        return self._clock() + (ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds)

    def _insert_locked(self, key: str, expires_at: float) -> bool:
        """Caller holds the lock. Returns True when the oldest entry was evicted."""
        evicted = False
        if key in self._entries:
            # Re-blacklisting moves the entry to the newest position with a fresh expiry
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            evicted = True
        self._entries[key] = expires_at
        return evicted

    def _record(self, key: str, expires_at: float, size: int, evicted: bool) -> None:
        REVOKED_TOKENS.set(size)
        TOKEN_REVOCATIONS.inc()
        if evicted:
            REVOCATION_EVICTIONS.inc()
            logger.warning("Blacklist size limit reached, removed oldest entry size=%s", size)
        logger.info("Token blacklisted token_hash=%s expires_at=%.0f", key[:10], expires_at)

    def blacklist(self, token: str, ttl_seconds: int | None = None) -> None:
        key = token_fingerprint(token)
        expires_at = self._expiry(ttl_seconds)
        with self._lock:
            evicted = self._insert_locked(key, expires_at)
            size = len(self._entries)
        self._record(key, expires_at, size, evicted)

    def consume(self, token: str, ttl_seconds: int | None = None) -> bool:
        """Blacklist a single-use token. Only the first caller gets True; later callers see it revoked."""
        key = token_fingerprint(token)
        expires_at = self._expiry(ttl_seconds)
        with self._lock:
            current = self._entries.get(key)
            if current is not None and current > self._clock():
                return False
            evicted = self._insert_locked(key, expires_at)
            size = len(self._entries)
        self._record(key, expires_at, size, evicted)
        return True

    def is_revoked(self, token: str) -> bool:
        key = token_fingerprint(token)
        with self._lock:
            expires_at = self._entries.get(key)
            if expires_at is None:
                return False
            if expires_at > self._clock():
                return True
            del self._entries[key]
            size = len(self._entries)
        REVOKED_TOKENS.set(size)
        return False

    def sweep(self) -> int:
        """Remove expired entries. Returns count removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, expires_at in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
            size = len(self._entries)
        REVOKED_TOKENS.set(size)
        if expired:
            logger.info("Cleaned up expired blacklisted tokens count=%s", len(expired))
        return len(expired)


_store: RevocationStore | None = None
_store_lock = threading.Lock()


def get_revocation_store() -> RevocationStore:
    """Return the process-wide revocation store (created from settings on first use)."""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = InMemoryRevocationStore(
                    max_size=settings.token_blacklist_max_size,
                    default_ttl_seconds=settings.access_token_expire_seconds,
                )
    return _store


def set_revocation_store(store: RevocationStore | None) -> None:
    """Replace the process-wide store; None resets to a fresh default on next use."""
    global _store
    with _store_lock:
        _store = store


def sweep_revoked_tokens() -> int:
    """Scheduler job: drop expired blacklist entries even when nobody looks them up."""
    try:
        return get_revocation_store().sweep()
    except Exception as e:
        logger.warning("Blacklist sweep error: %s", e)
        return 0
