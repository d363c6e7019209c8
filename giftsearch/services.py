"""Construction and shutdown of the search-cost-optimization services.

Everything is built explicitly from a :class:`Settings` instance so tests and
the HTTP app each get isolated instances instead of module-level singletons.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

import redis

from .backends import KeyValueStore, SharedTier, build_key_value_store, build_shared_tier, connect_redis
from .budget import BudgetGate
from .coalescer import RequestCoalescer
from .config import Settings, settings as default_settings
from .learner import UsageLearner
from .models import CategorySearchResult, ProductRecord
from .orchestrator import SearchOrchestrator
from .result_cache import ResultCache
from .strategies import CategoryStrategyRegistry
from .tiered_cache import POPULAR_CATEGORIES, TieredCache
from .upstream import HttpUpstream, RawSearch

logger = logging.getLogger(__name__)


@dataclass
class SearchServices:
    config: Settings
    cache: ResultCache
    coalescer: RequestCoalescer
    budget: BudgetGate
    learner: UsageLearner
    tiered_cache: TieredCache
    orchestrator: SearchOrchestrator
    registry: CategoryStrategyRegistry
    upstream: Optional[HttpUpstream] = None
    redis_client: Optional[redis.Redis] = None

    async def search(self, query: str, max_results: Optional[int] = None) -> List[ProductRecord]:
        return await self.orchestrator.search(query, max_results)

    async def search_category(
        self, category: str, term: str = "", options: Optional[Mapping[str, Any]] = None
    ) -> CategorySearchResult:
        return await self.registry.execute_search(category, term, options)

    def start_background_warming(self, interval_seconds: Optional[float] = None) -> None:
        kwargs = {"interval_seconds": interval_seconds} if interval_seconds else {}
        self.tiered_cache.start_warming(
            self.registry.warm_search,
            sorted(POPULAR_CATEGORIES),
            self.learner.popular_queries(5),
            **kwargs,
        )

    def health(self) -> dict:
        redis_ok = False
        if self.redis_client is not None:
            try:
                redis_ok = bool(self.redis_client.ping())
            except redis.RedisError:
                redis_ok = False
        return {
            "redis": redis_ok,
            "shared_tier": self.tiered_cache.shared_enabled,
            "usage_records": len(self.learner),
            "budget": self.budget.snapshot(),
        }

    async def aclose(self) -> None:
        self.tiered_cache.close()
        self.coalescer.close()
        self.learner.close()
        self.budget.save()
        if self.upstream is not None:
            await self.upstream.aclose()
        if self.redis_client is not None:
            self.redis_client.close()
        logger.info("Search services closed")


def create_services(
    config: Settings = default_settings,
    raw_search: Optional[RawSearch] = None,
    store: Optional[KeyValueStore] = None,
    shared_tier: Optional[SharedTier] = None,
    use_redis: Optional[bool] = None,
) -> SearchServices:
    """Wire every component; Redis is used when reachable unless disabled."""

    redis_client = connect_redis(config) if (use_redis if use_redis is not None else config.redis_enabled) else None
    if store is None:
        store = build_key_value_store(redis_client, config)
    if shared_tier is None:
        shared_tier = build_shared_tier(redis_client)

    upstream: Optional[HttpUpstream] = None
    if raw_search is None:
        upstream = HttpUpstream(config)
        raw_search = upstream

    cache = ResultCache(
        ttl_seconds=config.result_cache_ttl_seconds,
        max_entries=config.result_cache_max_entries,
        fuzzy_threshold=config.fuzzy_threshold,
        persistent=shared_tier,
        persistent_ttl_seconds=config.result_cache_persistent_ttl_seconds,
    )
    coalescer = RequestCoalescer(
        debounce_seconds=config.debounce_seconds,
        cooldown_seconds=config.cooldown_seconds,
        reuse_in_cooldown=config.cooldown_reuse,
    )
    budget = BudgetGate(monthly_limit=config.monthly_budget, cost_per_call=config.cost_per_call, store=store)
    budget.load()
    learner = UsageLearner(store, scope=config.usage_scope, flush_seconds=config.usage_flush_seconds)
    learner.load()

    orchestrator = SearchOrchestrator(
        raw_search=raw_search,
        cache=cache,
        coalescer=coalescer,
        budget=budget,
        learner=learner,
        high_confidence_terms=config.high_confidence_mock_terms,
        default_max_results=config.default_max_results,
    )
    tiered_cache = TieredCache(shared=shared_tier)
    registry = CategoryStrategyRegistry(orchestrator.search, cache=tiered_cache)

    logger.info(
        "Search services ready (budget %s, cost/call %s, shared tier %s)",
        budget.monthly_limit,
        budget.cost_per_call,
        tiered_cache.shared_enabled,
    )
    return SearchServices(
        config=config,
        cache=cache,
        coalescer=coalescer,
        budget=budget,
        learner=learner,
        tiered_cache=tiered_cache,
        orchestrator=orchestrator,
        registry=registry,
        upstream=upstream,
        redis_client=redis_client,
    )
