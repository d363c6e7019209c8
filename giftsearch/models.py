"""Pydantic models for product records and response payloads."""
from __future__ import annotations

from pydantic import BaseModel, Field


class ProductRecord(BaseModel):
    product_id: str
    title: str
    price: float | None = None
    description: str = ""
    image: str | None = None
    category: str | None = None
    retailer: str | None = None
    rating: float | None = None
    review_count: int | None = None
    brand: str | None = None
    source: str = Field("upstream", description="Origin of the record: upstream or mock")


class SearchResponse(BaseModel):
    query: str
    normalized_query: str
    results: list[ProductRecord]
    took_ms: float


class CategorySearchResult(BaseModel):
    """Terminal state of a category search.

    ``error`` is only set when both the primary strategy and its fallback
    failed; ``results`` is then empty.
    """

    category: str
    strategy: str
    results: list[ProductRecord] = Field(default_factory=list)
    used_fallback: bool = False
    from_cache: bool = False
    error: str | None = None


class CategorySearchResponse(CategorySearchResult):
    term: str
    took_ms: float
