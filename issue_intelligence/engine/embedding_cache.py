"""In-memory embedding cache with TTL expiry, content-hash validation and size-bounded eviction."""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable

from issue_intelligence.engine.config import ConfigurationError, intel_settings
from issue_intelligence.engine.models import CacheEntry, CacheStats

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """Embedding store keyed by issue id.

    An entry is only returned when the caller's content hash matches the
    stored one and its TTL has not elapsed; otherwise it is deleted. When a
    new key would exceed ``max_size`` the oldest entries (by ``cached_at``)
    are evicted first.
    """

    def __init__(
        self,
        ttl_hours: float | None = None,
        max_size: int | None = None,
        eviction_fraction: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_hours is None:
            ttl_hours = intel_settings.cache_ttl_hours
        if max_size is None:
            max_size = intel_settings.cache_max_size
        if eviction_fraction is None:
            eviction_fraction = intel_settings.cache_eviction_fraction

        if ttl_hours < 0:
            raise ConfigurationError(f"ttl_hours must be >= 0, got {ttl_hours}")
        if max_size < 1:
            raise ConfigurationError(f"max_size must be >= 1, got {max_size}")
        if not 0 < eviction_fraction <= 1:
            raise ConfigurationError(f"eviction_fraction must be in (0, 1], got {eviction_fraction}")

        self.ttl_seconds = ttl_hours * 3600
        self.max_size = max_size
        self.eviction_fraction = eviction_fraction
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.cached_at > self.ttl_seconds

    def get(self, issue_id: str, content_hash: str) -> list[float] | None:
        """Return the cached embedding, or None if missing, expired or stale."""
        with self._lock:
            entry = self._entries.get(issue_id)
            if entry is None:
                return None

            if entry.content_hash != content_hash:
                del self._entries[issue_id]
                logger.debug("Invalidated embedding for %s: content changed", issue_id)
                return None

            if self._is_expired(entry, self._clock()):
                del self._entries[issue_id]
                logger.debug("Expired embedding for %s", issue_id)
                return None

            return list(entry.embedding)

    def set(self, issue_id: str, content_hash: str, embedding: list[float]) -> None:
        """Insert or overwrite an entry. Only new keys can trigger eviction."""
        with self._lock:
            if issue_id not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest()

            self._entries[issue_id] = CacheEntry(
                issue_id=issue_id,
                content_hash=content_hash,
                embedding=tuple(embedding),
                cached_at=self._clock(),
            )

    def _evict_oldest(self) -> None:
        # Caller holds the lock. sorted() is stable, so equal timestamps fall
        # back to insertion order.
        evict_count = max(1, math.floor(self.max_size * self.eviction_fraction))
        oldest = sorted(self._entries.values(), key=lambda e: e.cached_at)[:evict_count]
        for entry in oldest:
            del self._entries[entry.issue_id]
        logger.debug("Evicted %d oldest embeddings (max_size=%d)", len(oldest), self.max_size)

    def has(self, issue_id: str) -> bool:
        """Existence check that ignores TTL and content hash."""
        with self._lock:
            return issue_id in self._entries

    def clean_expired(self) -> int:
        """Remove all TTL-expired entries. Returns count of deleted entries."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def get_stats(self) -> CacheStats:
        """Size, limits, and the age in seconds of the oldest and newest entries."""
        with self._lock:
            now = self._clock()
            ages = [now - entry.cached_at for entry in self._entries.values()]
            return CacheStats(
                size=len(self._entries),
                max_size=self.max_size,
                ttl_seconds=self.ttl_seconds,
                oldest_entry_age=max(ages) if ages else None,
                newest_entry_age=min(ages) if ages else None,
            )
