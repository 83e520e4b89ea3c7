"""Revoked access token tracking."""

import threading
import time


class TokenDenylist:
    """Expiring set of revoked tokens.

    Each entry lives until the token's own expiry, after which the token
    would be rejected anyway. All access goes through one lock; the
    instance is shared by every request thread.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._revoked: dict[str, float] = {}

    def revoke(self, token: str, expires_at: float) -> None:
        """Deny a token until ``expires_at`` (epoch seconds)."""
        with self._lock:
            self._revoked[token] = expires_at
            self._purge_locked()

    def is_revoked(self, token: str) -> bool:
        with self._lock:
            expires_at = self._revoked.get(token)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._revoked[token]
                return False
            return True

    def purge(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [token for token, exp in self._revoked.items() if exp <= now]
        for token in expired:
            del self._revoked[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._revoked)
