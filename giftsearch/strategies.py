"""Category browsing: a static table of search strategies with fallbacks.

Each :class:`CategoryKey` maps to a :class:`CategoryStrategy` naming the
search method and the plain query used when that method fails. A category
search moves through::

    primary attempt -> success
                    -> fallback attempt (default method, fallback query)
                           -> success
                           -> failed (empty results + error marker)

Both terminal states return a :class:`CategorySearchResult`; nothing raises to
the caller. Unknown or inactive keys resolve to ``CategoryKey.DEFAULT``.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .models import CategorySearchResult, ProductRecord
from .tiered_cache import BRAND_SEARCH, CATEGORY_SEARCH, FALLBACK, TieredCache

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20

Search = Callable[[str, int], Awaitable[List[ProductRecord]]]
SearchMethod = Callable[[Search, str, Dict[str, Any]], Awaitable[List[ProductRecord]]]


class CategoryKey(str, Enum):
    DEFAULT = "default"
    LUXURY = "luxury"
    GIFTS_FOR_HER = "gifts-for-her"
    GIFTS_FOR_HIM = "gifts-for-him"
    GIFTS_UNDER_50 = "gifts-under-50"
    BEST_SELLING = "best-selling"
    ELECTRONICS = "electronics"
    BRAND = "brand"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "CategoryKey":
        value = (raw or "").strip().lower().replace("_", "-").replace(" ", "-")
        try:
            return cls(value)
        except ValueError:
            return cls.DEFAULT


@dataclass(frozen=True)
class CategoryStrategy:
    key: CategoryKey
    search_method: SearchMethod
    fallback_query: str
    is_active: bool = True


def _limit(options: Mapping[str, Any]) -> int:
    return int(options.get("limit") or DEFAULT_LIMIT)


def _price_filter(products: Iterable[ProductRecord], options: Mapping[str, Any]) -> List[ProductRecord]:
    min_price = options.get("min_price")
    max_price = options.get("max_price")
    low = float(min_price) if min_price is not None else None
    high = float(max_price) if max_price is not None else None
    if low is None and high is None:
        return list(products)
    kept = []
    for product in products:
        if product.price is None:
            continue
        if low is not None and product.price < low:
            continue
        if high is not None and product.price > high:
            continue
        kept.append(product)
    return kept


async def _multi_query(search: Search, queries: Sequence[str], options: Mapping[str, Any]) -> List[ProductRecord]:
    """Run ``queries`` concurrently and merge by product id, first query first."""

    limit = _limit(options)
    per_query = max(1, math.ceil(limit / len(queries)))
    batches = await asyncio.gather(*(search(query, per_query) for query in queries))
    merged: List[ProductRecord] = []
    seen: set[str] = set()
    for batch in batches:
        for product in batch:
            if product.product_id in seen:
                continue
            seen.add(product.product_id)
            merged.append(product)
    return _price_filter(merged, options)[:limit]


def _with_term(term: str, queries: Sequence[str]) -> List[str]:
    if not term:
        return list(queries)
    return [f"{term} {queries[0]}", *queries[1:]]


async def search_default(search: Search, term: str, options: Dict[str, Any]) -> List[ProductRecord]:
    return await _multi_query(search, [term or "best selling gifts"], options)


async def search_luxury(search: Search, term: str, options: Dict[str, Any]) -> List[ProductRecord]:
    return await _multi_query(
        search, _with_term(term, ["luxury designer handbags", "luxury watches", "fine jewelry"]), options
    )


async def search_gifts_for_her(search: Search, term: str, options: Dict[str, Any]) -> List[ProductRecord]:
    return await _multi_query(
        search, _with_term(term, ["gifts for her", "jewelry for women", "spa gift set"]), options
    )


async def search_gifts_for_him(search: Search, term: str, options: Dict[str, Any]) -> List[ProductRecord]:
    return await _multi_query(
        search, _with_term(term, ["gifts for him", "mens watch", "gadgets for men"]), options
    )


async def search_gifts_under_50(search: Search, term: str, options: Dict[str, Any]) -> List[ProductRecord]:
    capped = {**options, "max_price": min(float(options.get("max_price") or 50), 50.0)}
    return await _multi_query(search, _with_term(term, ["gifts under 50", "stocking stuffers"]), capped)


async def search_best_selling(search: Search, term: str, options: Dict[str, Any]) -> List[ProductRecord]:
    query = f"best selling {term}" if term else "best selling products"
    return await _multi_query(search, [query], options)


async def search_electronics(search: Search, term: str, options: Dict[str, Any]) -> List[ProductRecord]:
    return await _multi_query(
        search, _with_term(term, ["best selling electronics", "headphones", "smart home devices"]), options
    )


async def search_brand(search: Search, term: str, options: Dict[str, Any]) -> List[ProductRecord]:
    if not term.strip():
        raise ValueError("brand search requires a brand name")
    return await _multi_query(search, [term, f"{term} best sellers"], options)


DEFAULT_STRATEGIES: Dict[CategoryKey, CategoryStrategy] = {
    strategy.key: strategy
    for strategy in (
        CategoryStrategy(CategoryKey.DEFAULT, search_default, "best selling"),
        CategoryStrategy(CategoryKey.LUXURY, search_luxury, "luxury gifts"),
        CategoryStrategy(CategoryKey.GIFTS_FOR_HER, search_gifts_for_her, "gifts for women"),
        CategoryStrategy(CategoryKey.GIFTS_FOR_HIM, search_gifts_for_him, "gifts for men"),
        CategoryStrategy(CategoryKey.GIFTS_UNDER_50, search_gifts_under_50, "gifts under 50"),
        CategoryStrategy(CategoryKey.BEST_SELLING, search_best_selling, "best sellers"),
        CategoryStrategy(CategoryKey.ELECTRONICS, search_electronics, "electronics"),
        CategoryStrategy(CategoryKey.BRAND, search_brand, "best selling brands"),
    )
}


class CategoryStrategyRegistry:
    def __init__(
        self,
        search: Search,
        cache: Optional[TieredCache] = None,
        strategies: Optional[Mapping[CategoryKey, CategoryStrategy]] = None,
    ) -> None:
        self.search = search
        self.cache = cache
        self.strategies: Dict[CategoryKey, CategoryStrategy] = dict(strategies or DEFAULT_STRATEGIES)
        if CategoryKey.DEFAULT not in self.strategies:
            raise ValueError("strategy table must define CategoryKey.DEFAULT")

    def resolve(self, category: str | CategoryKey | None) -> CategoryStrategy:
        key = category if isinstance(category, CategoryKey) else CategoryKey.parse(category)
        strategy = self.strategies.get(key)
        if strategy is None or not strategy.is_active:
            return self.strategies[CategoryKey.DEFAULT]
        return strategy

    def available_categories(self) -> List[str]:
        return [key.value for key, strategy in self.strategies.items() if strategy.is_active]

    def _cache_type(self, strategy: CategoryStrategy) -> str:
        return BRAND_SEARCH if strategy.key is CategoryKey.BRAND else CATEGORY_SEARCH

    async def _cached(
        self, strategy: CategoryStrategy, term: str, options: Dict[str, Any]
    ) -> Optional[CategorySearchResult]:
        if self.cache is None:
            return None
        for cache_type in (self._cache_type(strategy), FALLBACK):
            entry = await asyncio.to_thread(self.cache.get, cache_type, strategy.key.value, term, options)
            if entry is not None:
                return CategorySearchResult(
                    category=strategy.key.value,
                    strategy=strategy.key.value,
                    results=[ProductRecord(**item) for item in entry.data],
                    used_fallback=cache_type == FALLBACK,
                    from_cache=True,
                )
        return None

    async def _store(
        self, cache_type: str, strategy: CategoryStrategy, term: str, options: Dict[str, Any], results: List[ProductRecord]
    ) -> None:
        if self.cache is None or not results:
            return
        data = [product.model_dump() for product in results]
        await asyncio.to_thread(self.cache.set, cache_type, strategy.key.value, term, data, options)

    async def execute_search(
        self,
        category: str | CategoryKey | None,
        term: str = "",
        options: Optional[Mapping[str, Any]] = None,
    ) -> CategorySearchResult:
        options = dict(options or {})
        # Same key shape as background warming, which always sets a limit.
        options.setdefault("limit", DEFAULT_LIMIT)
        term = term or ""
        strategy = self.resolve(category)
        requested = category.value if isinstance(category, CategoryKey) else (category or CategoryKey.DEFAULT.value)

        try:
            cached = await self._cached(strategy, term, options)
        except Exception:
            logger.exception("Category cache lookup failed for %s", strategy.key.value)
            cached = None
        if cached is not None:
            logger.info("category %s served from cache (%s results)", strategy.key.value, len(cached.results))
            return cached

        try:
            results = await strategy.search_method(self.search, term, options)
        except Exception as exc:
            logger.warning("Primary strategy %s failed: %s", strategy.key.value, exc)
            if strategy.key is CategoryKey.DEFAULT:
                return self._failed(requested, strategy, exc)
        else:
            await self._store_quietly(self._cache_type(strategy), strategy, term, options, results)
            logger.info("category %s primary search returned %s results", strategy.key.value, len(results))
            return CategorySearchResult(category=requested, strategy=strategy.key.value, results=results)

        default = self.strategies[CategoryKey.DEFAULT]
        try:
            results = await default.search_method(self.search, strategy.fallback_query, options)
        except Exception as exc:
            logger.error("Fallback %r for %s failed: %s", strategy.fallback_query, strategy.key.value, exc)
            return self._failed(requested, strategy, exc)

        await self._store_quietly(FALLBACK, strategy, term, options, results)
        logger.info(
            "category %s served by fallback %r (%s results)", strategy.key.value, strategy.fallback_query, len(results)
        )
        return CategorySearchResult(
            category=requested, strategy=strategy.key.value, results=results, used_fallback=True
        )

    async def _store_quietly(self, *args: Any) -> None:
        try:
            await self._store(*args)
        except Exception:
            logger.exception("Failed to cache category results")

    def _failed(self, requested: str, strategy: CategoryStrategy, exc: Exception) -> CategorySearchResult:
        return CategorySearchResult(
            category=requested,
            strategy=strategy.key.value,
            results=[],
            used_fallback=strategy.key is not CategoryKey.DEFAULT,
            error=f"{type(exc).__name__}: {exc}",
        )

    async def search_category(
        self,
        category: str | CategoryKey | None,
        term: str = "",
        options: Optional[Mapping[str, Any]] = None,
    ) -> List[ProductRecord]:
        result = await self.execute_search(category, term, options)
        return result.results

    async def warm_search(self, category: str, term: str, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Search function shape expected by :meth:`TieredCache.warm`."""

        strategy = self.resolve(category)
        results = await strategy.search_method(self.search, term, options)
        return [product.model_dump() for product in results]
