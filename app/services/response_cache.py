"""
In-process response cache for DSCR status.

Borrower and approver pages poll the status endpoint; this absorbs the
bursts. Entries are keyed by (loan ID, lowercased caller address) and live
for 30 seconds.

The map is shared by every request in the process and is not locked. Two
simultaneous misses on one key both recompute, which is harmless because
reconciliation only reads. Expired entries are swept on put once the map
holds more than the sweep threshold; there is no hard size cap.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from app.core.config import get_settings

T = TypeVar("T")

CACHE_TTL_SECONDS = 30.0
SWEEP_THRESHOLD = 100


@dataclass
class CacheEntry(Generic[T]):
    payload: T
    inserted_at: float


def make_key(loan_id: str, caller_address: str) -> tuple[str, str]:
    return (loan_id, caller_address.lower())


class ResponseCache(Generic[T]):
    """TTL map exposing only get and put."""

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        sweep_threshold: int = SWEEP_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_threshold = sweep_threshold
        self._clock = clock
        self._entries: dict[Any, CacheEntry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry[T], now: float) -> bool:
        return now - entry.inserted_at >= self.ttl_seconds

    def get(self, key) -> Optional[T]:
        """Cached payload, or None on a miss or an expired entry."""
        entry = self._entries.get(key)
        if entry is None or self._expired(entry, self._clock()):
            return None
        return entry.payload

    def put(self, key, payload: T) -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(payload=payload, inserted_at=now)
        if len(self._entries) > self.sweep_threshold:
            self._sweep(now)

    def _sweep(self, now: float) -> None:
        expired = [k for k, entry in self._entries.items() if self._expired(entry, now)]
        for k in expired:
            self._entries.pop(k, None)


_dscr_status_cache: Optional[ResponseCache] = None


def get_dscr_status_cache() -> ResponseCache:
    """Process-wide DSCR status cache, created on first use."""
    global _dscr_status_cache
    if _dscr_status_cache is None:
        settings = get_settings()
        _dscr_status_cache = ResponseCache(
            ttl_seconds=settings.dscr_cache_ttl_seconds,
            sweep_threshold=settings.dscr_cache_sweep_threshold,
        )
    return _dscr_status_cache
