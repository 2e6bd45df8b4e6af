from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    endpoint: str
    limit: int
    window_seconds: int


class InMemoryRateLimiter:
    def __init__(self) -> None:
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def check(self, *, key: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        now = time.time()
        window = max(int(window_seconds), 1)
        max_hits = max(int(limit), 1)
        with self._lock:
            bucket = self._hits[key]
            cutoff = now - window
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            if len(bucket) >= max_hits:
                retry_after = int(max(bucket[0] + window - now, 1))
                return False, retry_after, 0
            bucket.append(now)
            remaining = max(max_hits - len(bucket), 0)
            return True, 0, remaining

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


_RATE_LIMITER = InMemoryRateLimiter()


def _hash_scope(scope_key: str) -> str:
    raw = (scope_key or "").encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:24]


def enforce_rate_limit(*, rule: RateLimitRule, scope_key: str) -> tuple[bool, int]:
    allowed, retry_after, _remaining = _RATE_LIMITER.check(
        key=f"{rule.endpoint}:{scope_key}",
        limit=rule.limit,
        window_seconds=rule.window_seconds,
    )
    if not allowed:
        # Scope keys carry emails and IPs; only the hash is logged.
        logger.warning(
            "Rate limit hit on %s (scope=%s, retry_after=%ss)",
            rule.endpoint, _hash_scope(scope_key), retry_after,
        )
    return allowed, retry_after


def reset_rate_limits() -> None:
    _RATE_LIMITER.reset()
