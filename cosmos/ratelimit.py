from __future__ import annotations

import logging
import math
import os
import threading
import time
from collections import OrderedDict, deque
from typing import Callable, Deque, List, Mapping, Optional

log = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)) or default)
    except ValueError:
        return default


MAX_REQUESTS: int = _int_env("RATE_MAX_REQUESTS", 5)
WINDOW_SECONDS: float = _float_env("RATE_WINDOW_SECONDS", 60.0)
MAX_KEYS: int = _int_env("RATE_MAX_KEYS", 10_000)

UNKNOWN_CLIENT = "unknown"


class SlidingWindowRateLimiter:
    """
    Per-key sliding-window limiter held in process memory.

    Keys live in an LRU map capped at ``max_keys``. When a new key would
    exceed the cap, keys whose window has fully expired go first, then the
    least recently used one. Evicting a live key forgets its history.
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        max_keys: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = int(max_requests if max_requests is not None else MAX_REQUESTS)
        self.window_seconds = float(window_seconds if window_seconds is not None else WINDOW_SECONDS)
        self.max_keys = max(1, int(max_keys if max_keys is not None else MAX_KEYS))
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._clock = clock
        self._hits: "OrderedDict[str, Deque[float]]" = OrderedDict()
        self._lock = threading.Lock()

    def _in_window(self, hits: Deque[float], now: float) -> List[float]:
        cutoff = now - self.window_seconds
        return [t for t in hits if t > cutoff]

    def _prune(self, hits: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def _evict_for_new_key(self, now: float) -> None:
        """Drop least recently used keys until one more fits.

        Keys move to the end on every touch, so expired ones collect at the head.
        """
        cutoff = now - self.window_seconds
        while len(self._hits) >= self.max_keys:
            evicted, hits = self._hits.popitem(last=False)
            if hits and hits[-1] > cutoff:
                log.warning("ratelimit: evicted live key=%s (max_keys=%d)", evicted, self.max_keys)

    def is_allowed(self, key: str) -> bool:
        key = key or UNKNOWN_CLIENT
        with self._lock:
            now = self._clock()
            hits = self._hits.get(key)
            if hits is None:
                self._evict_for_new_key(now)
                hits = deque()
                self._hits[key] = hits
            else:
                self._hits.move_to_end(key)
                self._prune(hits, now)
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def remaining(self, key: str) -> int:
        key = key or UNKNOWN_CLIENT
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return self.max_requests
            used = len(self._in_window(hits, self._clock()))
            return max(0, self.max_requests - used)

    def retry_after(self, key: str) -> int:
        """Whole seconds until the key can be admitted again; 0 if it can now."""
        key = key or UNKNOWN_CLIENT
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return 0
            now = self._clock()
            recent = self._in_window(hits, now)
            if len(recent) < self.max_requests:
                return 0
            # Capacity frees when the oldest hit that keeps us at the cap expires
            oldest = recent[len(recent) - self.max_requests]
            return max(1, math.ceil(oldest + self.window_seconds - now))

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


def client_identifier(headers: Mapping[str, str]) -> str:
    """First X-Forwarded-For hop, else X-Real-IP, else the shared 'unknown' bucket."""
    forwarded = (headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return UNKNOWN_CLIENT


_default_limiter: Optional[SlidingWindowRateLimiter] = None


def get_default_limiter() -> SlidingWindowRateLimiter:
    global _default_limiter
    if _default_limiter is None:
        _default_limiter = SlidingWindowRateLimiter()
    return _default_limiter


def is_allowed(key: str) -> bool:
    return get_default_limiter().is_allowed(key)


def remaining(key: str) -> int:
    return get_default_limiter().remaining(key)


def retry_after(key: str) -> int:
    return get_default_limiter().retry_after(key)


def _reset() -> None:
    """Used by tests to clear state and pick up patched limits."""
    global _default_limiter
    _default_limiter = None
