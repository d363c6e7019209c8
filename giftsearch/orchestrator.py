"""Cost-aware free-text search.

:class:`SearchOrchestrator` is the single ``search`` entry point for UI
callers. For each query it:

1. looks the query and its synonyms up in the :class:`ResultCache` (exact, then
   fuzzy) and returns on the first hit;
2. otherwise runs one coalesced execution per normalized query that
   a. serves local mock data when the budget cannot cover another call,
   b. serves the local catalog for high-confidence terms it covers well,
   c. reserves one call's cost and calls the metered upstream, keeping the
      charge and caching on a non-empty answer, releasing it and falling back
      to (cached) mock data on an empty answer or failure;
3. records the search with the :class:`UsageLearner`. Only upstream answers
   (fresh or cached) move the success rate; mock data only counts as usage.

``search`` never raises: anything unexpected degrades to mock data.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from time import perf_counter
from typing import Dict, Iterable, List, Optional, Sequence

from .budget import BudgetGate
from .coalescer import RequestCoalescer
from .learner import UsageLearner
from .mock_data import find_mock_matches, generate_mock_results
from .models import ProductRecord
from .normalization import expand_query, normalize_query
from .result_cache import ResultCache
from .upstream import RawSearch, UpstreamError

logger = logging.getLogger(__name__)

MAX_RESPONSE_TIME_SAMPLES = 100
MIN_CONFIDENT_MOCK_RESULTS = 5
BATCH_DELAY_SECONDS = 0.2
PRELOAD_MAX_RESULTS = 20


@dataclass
class SearchMetrics:
    total_searches: int = 0
    cache_hits: int = 0
    upstream_calls: int = 0
    upstream_failures: int = 0
    empty_upstream: int = 0
    budget_blocked: int = 0
    confident_mock: int = 0
    learned_skips: int = 0
    mock_fallbacks: int = 0
    errors: int = 0


class SearchOrchestrator:
    def __init__(
        self,
        raw_search: RawSearch,
        cache: ResultCache,
        coalescer: RequestCoalescer,
        budget: BudgetGate,
        learner: UsageLearner,
        high_confidence_terms: Iterable[str] = (),
        default_max_results: int = 10,
        batch_delay_seconds: float = BATCH_DELAY_SECONDS,
    ) -> None:
        self.raw_search = raw_search
        self.cache = cache
        self.coalescer = coalescer
        self.budget = budget
        self.learner = learner
        self.high_confidence_terms = tuple(normalize_query(term) for term in high_confidence_terms if term)
        self.default_max_results = default_max_results
        self.batch_delay_seconds = batch_delay_seconds
        self._metrics = SearchMetrics()
        self._response_times: deque[float] = deque(maxlen=MAX_RESPONSE_TIME_SAMPLES)

    async def search(
        self,
        raw_query: str,
        max_results: Optional[int] = None,
        force_refresh: bool = False,
    ) -> List[ProductRecord]:
        start = perf_counter()
        limit = max_results or self.default_max_results
        query = normalize_query(raw_query)
        self._metrics.total_searches += 1
        if not query:
            return []

        try:
            if not force_refresh:
                cached = self._lookup_cache(query)
                if cached is not None:
                    self._metrics.cache_hits += 1
                    self._record_cache_hit(query, cached)
                    return cached[:limit]

            async def execute(normalized: str) -> List[ProductRecord]:
                return await self._execute(normalized, limit)

            results = await self.coalescer.run(query, execute)
            return results[:limit]
        except asyncio.CancelledError:
            raise
        except Exception:
            self._metrics.errors += 1
            logger.exception("search failed q=%r; serving mock data", query)
            return generate_mock_results(query, limit)
        finally:
            elapsed_ms = (perf_counter() - start) * 1000
            self._response_times.append(elapsed_ms)
            logger.info("timing: search total=%.2fms q=%r", elapsed_ms, query)

    def _lookup_cache(self, query: str) -> Optional[List[ProductRecord]]:
        for expansion in expand_query(query):
            cached = self.cache.get(expansion)
            if cached:
                if expansion != query:
                    logger.info("cache hit via synonym q=%r expansion=%r", query, expansion)
                return cached
        return None

    def _is_high_confidence(self, query: str) -> bool:
        return any(term in query for term in self.high_confidence_terms)

    def _record_cache_hit(self, query: str, cached: List[ProductRecord]) -> None:
        # Only upstream answers say anything about whether a query succeeds.
        if any(product.source == "upstream" for product in cached):
            self.learner.record_outcome(query, True, len(cached))
        else:
            self.learner.record_usage(query)

    def _budget_blocked(self, query: str, limit: int) -> List[ProductRecord]:
        self._metrics.budget_blocked += 1
        logger.warning("budget exhausted (%s spent); serving mock data q=%r", self.budget.spent, query)
        self.learner.record_usage(query)
        return generate_mock_results(query, limit)

    async def _execute(self, query: str, limit: int) -> List[ProductRecord]:
        if not self.budget.can_spend():
            return self._budget_blocked(query, limit)

        if self._is_high_confidence(query):
            local = find_mock_matches(query, limit)
            if len(local) >= min(MIN_CONFIDENT_MOCK_RESULTS, limit):
                self._metrics.confident_mock += 1
                logger.info("serving local catalog for high-confidence q=%r results=%s", query, len(local))
                self.cache.set(query, local)
                self.learner.record_usage(query)
                return local

        if not self.learner.is_likely_successful(query):
            self._metrics.learned_skips += 1
            logger.info("q=%r rarely succeeds upstream; serving mock data", query)
            self.learner.record_usage(query)
            return generate_mock_results(query, limit)

        # Hold the cost before the call so concurrent queries cannot overspend.
        reservation = self.budget.reserve()
        if reservation is None:
            return self._budget_blocked(query, limit)

        self._metrics.upstream_calls += 1
        try:
            response = await self.raw_search(query, limit)
        except asyncio.CancelledError:
            self.budget.release(reservation)
            raise
        except UpstreamError as exc:
            self._metrics.upstream_failures += 1
            logger.warning("upstream failed q=%r: %s", query, exc)
            self.budget.release(reservation)
            return self._fallback(query, limit)
        except Exception:
            self._metrics.upstream_failures += 1
            logger.exception("upstream raised unexpectedly q=%r", query)
            self.budget.release(reservation)
            return self._fallback(query, limit)

        if response.results:
            self.cache.set(query, response.results)
            self.learner.record_outcome(query, True, len(response.results))
            logger.info("upstream success q=%r results=%s spent=%s", query, len(response.results), self.budget.spent)
            return list(response.results)

        self.budget.release(reservation)
        if response.error:
            self._metrics.upstream_failures += 1
            logger.warning("upstream error q=%r: %s", query, response.error)
        else:
            self._metrics.empty_upstream += 1
            logger.info("upstream returned no results q=%r", query)
        return self._fallback(query, limit)

    def _fallback(self, query: str, limit: int) -> List[ProductRecord]:
        self._metrics.mock_fallbacks += 1
        results = generate_mock_results(query, limit)
        self.cache.set(query, results)
        self.learner.record_outcome(query, False, 0)
        return results

    async def batch_search(
        self,
        queries: Sequence[str],
        max_results: Optional[int] = None,
    ) -> Dict[str, List[ProductRecord]]:
        """Search several queries, serving cached ones first and spacing the rest."""

        limit = max_results or self.default_max_results
        unique: List[str] = []
        for raw in queries:
            query = normalize_query(raw)
            if query and query not in unique:
                unique.append(query)

        results: Dict[str, List[ProductRecord]] = {}
        uncached: List[str] = []
        for query in unique:
            cached = self._lookup_cache(query)
            if cached is not None:
                self._metrics.total_searches += 1
                self._metrics.cache_hits += 1
                results[query] = cached[:limit]
            else:
                uncached.append(query)
        logger.info("batch search: %s cache hits, %s to fetch", len(results), len(uncached))

        for index, query in enumerate(uncached):
            if index and self.batch_delay_seconds:
                await asyncio.sleep(self.batch_delay_seconds)
            results[query] = await self.search(query, limit)
        return results

    async def preload_popular_searches(self, limit: int = 10) -> int:
        """Warm the cache with queries users run most often."""

        seeds: List[str] = []
        for query in self.learner.popular_queries(limit) + self.cache.get_popular_queries(limit):
            if query not in seeds:
                seeds.append(query)
        seeds = seeds[:limit]
        if not seeds:
            return 0
        logger.info("Preloading %s popular searches", len(seeds))
        loaded = await self.batch_search(seeds, PRELOAD_MAX_RESULTS)
        return len(loaded)

    def metrics(self) -> dict:
        m = self._metrics
        saved = m.cache_hits + m.confident_mock
        cost = self.budget.cost_per_call
        average = sum(self._response_times) / len(self._response_times) if self._response_times else 0.0
        return {
            "total_searches": m.total_searches,
            "cache_hits": m.cache_hits,
            "cache_hit_rate": round(m.cache_hits / m.total_searches * 100, 2) if m.total_searches else 0.0,
            "upstream_calls": m.upstream_calls,
            "upstream_failures": m.upstream_failures,
            "empty_upstream": m.empty_upstream,
            "budget_blocked": m.budget_blocked,
            "confident_mock": m.confident_mock,
            "learned_skips": m.learned_skips,
            "mock_fallbacks": m.mock_fallbacks,
            "errors": m.errors,
            "api_calls_saved": saved,
            "estimated_cost_saved": str(cost * saved),
            "average_response_ms": round(average, 2),
            "cache": self.cache.stats(),
            "coalescer": self.coalescer.stats(),
            "budget": self.budget.snapshot(),
        }

    def reset(self) -> None:
        self.cache.clear()
        self._metrics = SearchMetrics()
        self._response_times.clear()
        logger.info("Search orchestrator reset; caches cleared")
