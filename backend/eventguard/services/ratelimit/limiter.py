"""
Attempt counting for brute-force defence on auth endpoints.

Buckets live in a ``limits`` storage (the same backend slowapi uses):
``memory://`` for a single process, ``redis://`` when several workers must
share counters. A bucket is created with its TTL on the first hit and the
TTL is not extended by later hits (fixed window).

Gate decisions use :meth:`RateLimiter.attempt`, which increments first and
then compares. A separate "check, then hit" would let concurrent requests
all pass the check before any of them is counted.
"""

from __future__ import annotations

import hashlib
import math
import threading
import time
from dataclasses import dataclass

import structlog
from limits.storage import Storage, storage_from_string

from eventguard.config.settings import Settings

_log = structlog.get_logger(__name__)

KEY_PREFIX = "auth-throttle"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one gated attempt. A rejection is a value, not an exception."""

    allowed: bool
    attempts: int
    limit: int
    retry_after: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.attempts)


def request_signature(client_ip: str, identity: str | None, path: str) -> str:
    """Stable bucket key for one client, one submitted identity, one endpoint."""
    raw = f"{client_ip}|{identity or 'unknown'}|{path}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class RateLimiter:
    """
    Fixed-window attempt counters keyed by request signature.

    Usage:
        limiter = RateLimiter(storage_from_string("memory://"))
        decision = limiter.attempt(key, max_attempts=5, window_seconds=900)
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        # incr() and the value it reports must be one step for every backend
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiter:
        return cls(storage_from_string(settings.rate_limit_storage_uri))

    @staticmethod
    def _bucket(key: str) -> str:
        return f"{KEY_PREFIX}/{key}"

    def hit(self, key: str, window_seconds: int) -> int:
        """Increment the bucket, creating it with a TTL if absent. Returns the new count."""
        with self._lock:
            return int(self._storage.incr(self._bucket(key), window_seconds))

    def attempts(self, key: str) -> int:
        return int(self._storage.get(self._bucket(key)))

    def too_many_attempts(self, key: str, max_attempts: int) -> bool:
        return self.attempts(key) >= max_attempts

    def available_in(self, key: str) -> int:
        """Seconds until the bucket expires (0 when there is no bucket)."""
        if self.attempts(key) == 0:
            return 0
        expires_at = self._storage.get_expiry(self._bucket(key))
        return max(0, math.ceil(expires_at - time.time()))

    def clear(self, key: str) -> None:
        self._storage.clear(self._bucket(key))

    def attempt(self, key: str, max_attempts: int, window_seconds: int) -> RateLimitDecision:
        count = self.hit(key, window_seconds)
        if count > max_attempts:
            return RateLimitDecision(
                allowed=False,
                attempts=count,
                limit=max_attempts,
                retry_after=max(1, self.available_in(key)),
            )
        return RateLimitDecision(allowed=True, attempts=count, limit=max_attempts)
