"""Adapter for the metered product-search API.

The core only depends on :data:`RawSearch`: an async callable taking a
normalized query and a result limit and returning an :class:`UpstreamResponse`
or raising :class:`UpstreamError`. :class:`HttpUpstream` is the production
implementation; data cleaning of upstream payloads lives here too.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .config import Settings, settings as default_settings
from .models import ProductRecord

logger = logging.getLogger(__name__)

MAX_UPSTREAM_RESULTS = 100


class UpstreamError(RuntimeError):
    """The metered search call failed (transport, HTTP status or payload)."""


@dataclass
class UpstreamResponse:
    results: List[ProductRecord] = field(default_factory=list)
    error: Optional[str] = None


RawSearch = Callable[[str, int], Awaitable[UpstreamResponse]]


def _parse_price(raw: Dict[str, Any]) -> Optional[float]:
    for name in ("price", "price_upper", "price_lower"):
        value = raw.get(name)
        if value in (None, ""):
            continue
        try:
            price = float(value)
        except (TypeError, ValueError):
            continue
        # Integer prices above 1000 are cents.
        if isinstance(value, int) and price >= 1000:
            price /= 100
        return round(price, 2)
    return None


def to_product(raw: Dict[str, Any]) -> ProductRecord:
    images = raw.get("images") or []
    return ProductRecord(
        product_id=str(raw.get("product_id") or raw.get("asin") or raw.get("id") or raw.get("title") or "unknown"),
        title=raw.get("title") or raw.get("name") or "Unknown Product",
        price=_parse_price(raw),
        description=raw.get("description") or ". ".join(raw.get("feature_bullets") or []),
        image=raw.get("image") or raw.get("main_image") or (images[0] if images else None),
        category=raw.get("category") or raw.get("product_category"),
        retailer=raw.get("retailer") or "amazon",
        rating=float(raw["rating"]) if raw.get("rating") not in (None, "") else None,
        review_count=int(raw["review_count"]) if raw.get("review_count") not in (None, "") else None,
        brand=raw.get("brand") or None,
        source="upstream",
    )


class HttpUpstream:
    """Calls the search endpoint with ``httpx``; one instance per process."""

    def __init__(self, config: Settings = default_settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = config.upstream_url
        self._auth = (config.upstream_api_key, "") if config.upstream_api_key else None
        self._client = client or httpx.AsyncClient(timeout=config.upstream_timeout_seconds)
        self.calls = 0

    async def __call__(self, query: str, max_results: int) -> UpstreamResponse:
        self.calls += 1
        params = {
            "query": query,
            "retailer": "amazon",
            "max_results": str(min(max_results, MAX_UPSTREAM_RESULTS)),
            "page": "1",
        }
        try:
            response = await self._client.get(self.url, params=params, auth=self._auth)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(f"upstream returned {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamError(f"upstream request failed: {exc}") from exc

        raw_results = payload.get("results") or []
        results = [to_product(item) for item in raw_results if isinstance(item, dict)]
        logger.info("upstream q=%r results=%s", query, len(results))
        return UpstreamResponse(results=results, error=payload.get("error"))

    async def aclose(self) -> None:
        await self._client.aclose()
