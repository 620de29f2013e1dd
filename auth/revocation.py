"""
auth/revocation.py -- In-process store of revoked (logged-out) tokens.

A revoked token stays in the store until it is older than the retention
window, which must be at least the maximum token lifetime so a revoked token
cannot become valid again before it would have expired naturally. The check
lives in core.config.Settings.

Concurrency:
  The store owns its synchronization; callers never lock. Every map operation
  runs under a single threading.Lock held only for that operation. purge takes
  a snapshot of the entries, then deletes each stale key with a
  compare-and-delete: if a concurrent revoke() refreshed the timestamp after
  the snapshot, the fresh entry survives. Sweeps never hold the lock across
  the whole map, so live is_revoked() checks are not stalled by a sweep.

Limitation (documented, not fixed): the store is volatile and process-local.
A restart clears every revocation, so tokens revoked just before a restart
are valid again until their own expiry. A shared backing store with native
TTL (e.g. Redis) can replace this class behind the same three methods.

Usage:
    revocations = TokenRevocationStore()
    revocations.revoke(token)
    revocations.is_revoked(token)            # True
    revocations.purge_older_than(86400)      # call periodically
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

logger = logging.getLogger("authgate.auth.revocation")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenRevocationStore:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def revoke(self, token: str | None) -> None:
        """Record the token as revoked now. Blank tokens are ignored."""
        if not token or not token.strip():
            return
        revoked_at = self._clock()
        with self._lock:
            self._entries[token] = revoked_at
        logger.info("Token revoked")

    def is_revoked(self, token: str | None) -> bool:
        if not token or not token.strip():
            return False
        with self._lock:
            return token in self._entries

    def purge_older_than(self, retention: timedelta | int | float) -> int:
        """Drop entries revoked more than `retention` ago. Returns the number removed.

        retention may be a timedelta or a number of seconds. Entries exactly at
        the cutoff are kept.
        """
        if not isinstance(retention, timedelta):
            retention = timedelta(seconds=retention)
        cutoff = self._clock() - retention
        with self._lock:
            snapshot = list(self._entries.items())
        removed = 0
        for token, revoked_at in snapshot:
            if revoked_at >= cutoff:
                continue
            with self._lock:
                # Compare-and-delete: a concurrent revoke() may have refreshed it.
                if self._entries.get(token) == revoked_at:
                    del self._entries[token]
                    removed += 1
        logger.debug("Revocation sweep removed %d entries, %d remain", removed, len(self))
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Revocation store cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
