"""Result cache with TTL, popularity scoring and fuzzy lookup.

The in-memory layer answers every lookup. An optional persistent tier (Redis in
production) keeps paid-for results across restarts: writes go through to it and
an exact miss in memory is looked up there and promoted back into memory.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .backends import SharedTier
from .models import ProductRecord
from .normalization import normalize_query
from .similarity import similarity

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60
DEFAULT_MAX_ENTRIES = 1000
DEFAULT_FUZZY_THRESHOLD = 0.8
DEFAULT_PERSISTENT_TTL_SECONDS = 4 * 60 * 60
MAX_RESULTS_PER_ENTRY = 50
PERSISTENT_KEY_PREFIX = "giftsearch:results:"
# Share of capacity kept after a popularity trim.
TRIM_RATIO = 0.8
EXACT_HIT_WEIGHT = 1.0
FUZZY_HIT_WEIGHT = 0.5


@dataclass
class CacheEntry:
    query: str
    results: List[ProductRecord]
    created_at: float
    hit_count: int = 0
    popularity_score: float = 1.0

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at > ttl


@dataclass
class CacheCounters:
    queries_observed: int = 0
    exact_hits: int = 0
    fuzzy_hits: int = 0
    persistent_hits: int = 0
    misses: int = 0
    evictions: int = 0


class ResultCache:
    """Maps normalized queries to result lists.

    Lookups never raise: anything unexpected degrades to a miss. A lock guards
    each operation because entries are mutated on every hit.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
        clock: Callable[[], float] = time.time,
        persistent: Optional[SharedTier] = None,
        persistent_ttl_seconds: int = DEFAULT_PERSISTENT_TTL_SECONDS,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.persistent = persistent
        self.persistent_ttl_seconds = persistent_ttl_seconds
        self.max_entries = max_entries
        self.fuzzy_threshold = fuzzy_threshold
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._counters = CacheCounters()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, raw_query: object) -> bool:
        if not isinstance(raw_query, str):
            return False
        with self._lock:
            return normalize_query(raw_query) in self._entries

    def get(self, raw_query: str) -> Optional[List[ProductRecord]]:
        key = normalize_query(raw_query)
        now = self._clock()
        with self._lock:
            self._counters.queries_observed += 1

            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(now, self.ttl_seconds):
                entry.hit_count += 1
                entry.popularity_score += EXACT_HIT_WEIGHT
                self._counters.exact_hits += 1
                logger.debug("cache exact hit q=%r hits=%s", key, entry.hit_count)
                return list(entry.results)

            best: Optional[CacheEntry] = None
            best_score = 0.0
            for candidate in self._entries.values():
                if candidate.is_expired(now, self.ttl_seconds):
                    continue
                score = similarity(key, candidate.query)
                if score > best_score:
                    best, best_score = candidate, score

            if best is not None and best_score >= self.fuzzy_threshold:
                best.popularity_score += FUZZY_HIT_WEIGHT
                self._counters.fuzzy_hits += 1
                logger.info("cache fuzzy hit q=%r matched=%r similarity=%.2f", key, best.query, best_score)
                return list(best.results)

        promoted = self._load_persistent(key)
        with self._lock:
            if promoted is None:
                self._counters.misses += 1
                logger.debug("cache miss q=%r", key)
                return None
            self._counters.persistent_hits += 1
            self._store(key, promoted, now)
        logger.info("cache persistent hit q=%r results=%s; promoted to memory", key, len(promoted))
        return list(promoted)

    def set(self, raw_query: str, results: Sequence[ProductRecord]) -> None:
        key = normalize_query(raw_query)
        capped = list(results)[:MAX_RESULTS_PER_ENTRY]
        now = self._clock()
        with self._lock:
            self._store(key, capped, now)
        self._save_persistent(key, capped)
        logger.debug("cache_store q=%r results=%s", key, len(capped))

    def _store(self, key: str, results: List[ProductRecord], now: float) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._cleanup(now, incoming=key)
        self._entries[key] = CacheEntry(query=key, results=results, created_at=now)

    def _load_persistent(self, key: str) -> Optional[List[ProductRecord]]:
        if self.persistent is None or not key:
            return None
        try:
            raw = self.persistent.get(PERSISTENT_KEY_PREFIX + key)
            if not raw:
                return None
            return [ProductRecord(**item) for item in json.loads(raw)]
        except Exception as exc:
            logger.warning("Ignoring unreadable persisted results for %r: %s", key, exc)
            return None

    def _save_persistent(self, key: str, results: List[ProductRecord]) -> None:
        if self.persistent is None or not key:
            return
        payload = json.dumps([product.model_dump() for product in results]).encode("utf-8")
        try:
            self.persistent.set_with_ttl(PERSISTENT_KEY_PREFIX + key, payload, self.persistent_ttl_seconds)
        except Exception as exc:
            logger.warning("Persisting results for %r failed: %s", key, exc)

    def _cleanup(self, now: float, incoming: str) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now, self.ttl_seconds)]
        for key in expired:
            del self._entries[key]

        target = int(self.max_entries * TRIM_RATIO)
        # Leave room for the entry about to be written.
        if incoming not in self._entries:
            target -= 1
        trimmed = 0
        if len(self._entries) > target:
            by_popularity = sorted(self._entries.values(), key=lambda entry: entry.popularity_score)
            for entry in by_popularity[: len(self._entries) - target]:
                del self._entries[entry.query]
                trimmed += 1

        self._counters.evictions += len(expired) + trimmed
        logger.info("cache cleanup expired=%s trimmed=%s size=%s", len(expired), trimmed, len(self._entries))

    def get_popular_queries(self, limit: int = 10) -> List[str]:
        """Unexpired queries with the highest popularity score, best first."""

        now = self._clock()
        with self._lock:
            live = [entry for entry in self._entries.values() if not entry.is_expired(now, self.ttl_seconds)]
        live.sort(key=lambda entry: entry.popularity_score, reverse=True)
        return [entry.query for entry in live[:limit]]

    def entry(self, raw_query: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(normalize_query(raw_query))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._counters = CacheCounters()

    def stats(self) -> dict:
        with self._lock:
            counters = self._counters
            hits = counters.exact_hits + counters.fuzzy_hits + counters.persistent_hits
            observed = counters.queries_observed
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "queries_observed": observed,
                "exact_hits": counters.exact_hits,
                "fuzzy_hits": counters.fuzzy_hits,
                "persistent_hits": counters.persistent_hits,
                "misses": counters.misses,
                "evictions": counters.evictions,
                "hit_rate": round(hits / observed * 100, 2) if observed else 0.0,
            }
