"""Two-layer cache for category and brand searches.

Layer 1 is a process-local dict (fast); layer 2 is an optional shared tier
(Redis) so several workers can reuse each other's results. Reads go local
first, then shared, backfilling the local layer on a shared hit. Writes go to
both layers with a TTL picked from the category class. When the shared tier is
missing or failing the cache keeps working on the local layer alone.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional

from .backends import SharedTier
from .normalization import normalize_query

logger = logging.getLogger(__name__)

CACHE_VERSION = "v1.0.0"

CATEGORY_SEARCH = "category-search"
BRAND_SEARCH = "brand-search"
SEARCH_RESULTS = "search-results"
FALLBACK = "fallback"

TTL_POPULAR_CATEGORIES = 15 * 60
TTL_SEARCH_RESULTS = 30 * 60
TTL_BRAND_SEARCHES = 45 * 60
TTL_STANDARD = 60 * 60
TTL_FALLBACK = 4 * 60 * 60

POPULAR_CATEGORIES = frozenset({"best-selling", "electronics", "gifts-for-her", "gifts-for-him"})

DEFAULT_MAX_LOCAL_ENTRIES = 500
# Matches the default category-search limit so warmed keys are hit.
WARM_LIMIT = 20

SearchFn = Callable[[str, str, Dict[str, Any]], Awaitable[Any]]


@dataclass
class TieredCacheEntry:
    data: Any
    created_at: float
    ttl_seconds: int
    version: str


def ttl_for(cache_type: str, category: str) -> int:
    if cache_type == FALLBACK:
        return TTL_FALLBACK
    if category in POPULAR_CATEGORIES:
        return TTL_POPULAR_CATEGORIES
    if cache_type == BRAND_SEARCH:
        return TTL_BRAND_SEARCHES
    if cache_type == SEARCH_RESULTS:
        return TTL_SEARCH_RESULTS
    return TTL_STANDARD


def options_hash(options: Optional[Mapping[str, Any]]) -> str:
    if not options:
        return "none"
    encoded = json.dumps(dict(options), sort_keys=True, default=str)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()[:12]


class TieredCache:
    def __init__(
        self,
        shared: Optional[SharedTier] = None,
        version: str = CACHE_VERSION,
        max_local_entries: int = DEFAULT_MAX_LOCAL_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.version = version
        self.max_local_entries = max_local_entries
        self._clock = clock
        self._local: Dict[str, TieredCacheEntry] = {}
        self._lock = threading.Lock()
        self._shared = shared
        self.shared_enabled = False
        self._warm_task: Optional[asyncio.Task] = None
        if shared is not None:
            self.initialize()

    def initialize(self) -> bool:
        """Ping the shared tier; on failure run local-only."""

        if self._shared is None:
            self.shared_enabled = False
            return False
        try:
            self.shared_enabled = bool(self._shared.ping())
        except Exception as exc:
            logger.warning("Shared cache tier unavailable, using local tier only: %s", exc)
            self.shared_enabled = False
        if self.shared_enabled:
            logger.info("Shared cache tier enabled (%s)", self.version)
        return self.shared_enabled

    def make_key(self, cache_type: str, category: str, term: str = "", options: Optional[Mapping[str, Any]] = None) -> str:
        return f"{self.version}:{cache_type}:{category}:{normalize_query(term)}:{options_hash(options)}"

    def _is_valid(self, entry: TieredCacheEntry, now: float) -> bool:
        return now - entry.created_at < entry.ttl_seconds and entry.version == self.version

    def get(
        self,
        cache_type: str,
        category: str,
        term: str = "",
        options: Optional[Mapping[str, Any]] = None,
    ) -> Optional[TieredCacheEntry]:
        key = self.make_key(cache_type, category, term, options)
        now = self._clock()

        with self._lock:
            entry = self._local.get(key)
            if entry is not None:
                if self._is_valid(entry, now):
                    logger.debug("tiered cache hit (local) %s", key)
                    return entry
                del self._local[key]

        entry = self._get_shared(key)
        if entry is not None and self._is_valid(entry, now):
            logger.debug("tiered cache hit (shared) %s", key)
            with self._lock:
                self._store_local(key, entry)
            return entry

        logger.debug("tiered cache miss %s", key)
        return None

    def _get_shared(self, key: str) -> Optional[TieredCacheEntry]:
        if not self.shared_enabled or self._shared is None:
            return None
        try:
            raw = self._shared.get(key)
        except Exception as exc:
            logger.warning("Shared tier get failed for %s: %s", key, exc)
            return None
        if not raw:
            return None
        try:
            return TieredCacheEntry(**json.loads(raw))
        except (ValueError, TypeError) as exc:
            logger.warning("Discarding malformed shared entry %s: %s", key, exc)
            return None

    def set(
        self,
        cache_type: str,
        category: str,
        term: str,
        data: Any,
        options: Optional[Mapping[str, Any]] = None,
    ) -> TieredCacheEntry:
        key = self.make_key(cache_type, category, term, options)
        ttl = ttl_for(cache_type, category)
        entry = TieredCacheEntry(data=data, created_at=self._clock(), ttl_seconds=ttl, version=self.version)
        with self._lock:
            self._store_local(key, entry)

        if self.shared_enabled and self._shared is not None:
            try:
                self._shared.set_with_ttl(key, json.dumps(asdict(entry), default=str).encode("utf-8"), ttl)
            except Exception as exc:
                logger.warning("Shared tier set failed for %s: %s", key, exc)
        logger.debug("tiered cache set %s (ttl %ss)", key, ttl)
        return entry

    def _store_local(self, key: str, entry: TieredCacheEntry) -> None:
        if key not in self._local and len(self._local) >= self.max_local_entries:
            oldest = min(self._local, key=lambda existing: self._local[existing].created_at)
            del self._local[oldest]
        self._local[key] = entry

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop local keys containing ``pattern``; shared entries expire by TTL."""

        with self._lock:
            doomed = [key for key in self._local if pattern in key]
            for key in doomed:
                del self._local[key]
        logger.info("Invalidated %s local entries matching %r", len(doomed), pattern)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._local.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._local)

    async def warm(
        self,
        search_fn: SearchFn,
        categories: Iterable[str] = (),
        priority_terms: Iterable[str] = (),
        options: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """Populate entries for popular categories and terms; returns count stored.

        Entries are keyed exactly as a category search with ``options`` looks
        them up: categories under ``category-search`` with an empty term, and
        priority terms as ``default``-category searches for that term.
        """

        options = dict(options) if options is not None else {"limit": WARM_LIMIT}

        async def warm_one(category: str, term: str) -> bool:
            cached = await asyncio.to_thread(self.get, CATEGORY_SEARCH, category, term, options)
            if cached is not None:
                logger.debug("Skipping warm for cached %s/%r", category, term)
                return False
            data = await search_fn(category, term, dict(options))
            if not data:
                return False
            await asyncio.to_thread(self.set, CATEGORY_SEARCH, category, term, data, options)
            return True

        jobs = [warm_one(category, "") for category in categories]
        jobs += [warm_one("default", term) for term in priority_terms]
        outcomes = await asyncio.gather(*jobs, return_exceptions=True)
        warmed = 0
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.warning("Cache warming item failed: %s", outcome)
            elif outcome:
                warmed += 1
        logger.info("Cache warming stored %s of %s entries", warmed, len(jobs))
        return warmed

    def start_warming(
        self,
        search_fn: SearchFn,
        categories: Iterable[str],
        priority_terms: Iterable[str] = (),
        interval_seconds: float = TTL_POPULAR_CATEGORIES,
    ) -> asyncio.Task:
        """Re-warm on a fixed schedule until :meth:`close`."""

        categories = list(categories)
        priority_terms = list(priority_terms)

        async def loop() -> None:
            while True:
                try:
                    await self.warm(search_fn, categories, priority_terms)
                except Exception:
                    logger.exception("Cache warming round failed")
                await asyncio.sleep(interval_seconds)

        self.stop_warming()
        self._warm_task = asyncio.get_running_loop().create_task(loop())
        return self._warm_task

    def stop_warming(self) -> None:
        if self._warm_task is not None and not self._warm_task.done():
            self._warm_task.cancel()
        self._warm_task = None

    def stats(self) -> dict:
        return {
            "local_size": len(self),
            "shared_enabled": self.shared_enabled,
            "version": self.version,
            "warming": self._warm_task is not None and not self._warm_task.done(),
        }

    def close(self) -> None:
        self.stop_warming()
        self.clear()
