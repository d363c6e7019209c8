"""Shared fakes for the search-layer tests."""
from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from giftsearch.models import ProductRecord
from giftsearch.upstream import UpstreamError, UpstreamResponse


def make_products(prefix: str, count: int, price: float = 25.0) -> List[ProductRecord]:
    return [
        ProductRecord(product_id=f"{prefix}-{idx}", title=f"{prefix} item {idx}", price=price + idx)
        for idx in range(count)
    ]


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Records calls; returns ``results`` or raises ``error``."""

    def __init__(
        self,
        results: Optional[List[ProductRecord]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.results = results if results is not None else make_products("up", 3)
        self.error = error
        self.delay = delay
        self.calls: List[tuple[str, int]] = []

    async def __call__(self, query: str, max_results: int) -> UpstreamResponse:
        self.calls.append((query, max_results))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return UpstreamResponse(results=list(self.results))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def failing_upstream() -> FakeUpstream:
    return FakeUpstream(error=UpstreamError("service unavailable"))
