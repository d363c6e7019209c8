"""FastAPI application exposing the cost-optimized search layer."""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Callable, List

from fastapi import FastAPI, HTTPException, Query, Request

from .config import settings
from .models import CategorySearchResponse, SearchResponse
from .normalization import normalize_query
from .services import SearchServices, create_services
from .strategies import DEFAULT_LIMIT

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL = logging.getLevelName(settings.log_level.upper())

# Force a predictable logging setup even when run under uvicorn so cache and
# budget decisions are visible. ``force=True`` replaces uvicorn's handlers.
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, force=True)
for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx"):
    logging.getLogger(name).setLevel(LOG_LEVEL)

logger = logging.getLogger(__name__)


def _services(request: Request) -> SearchServices:
    return request.app.state.services


def create_app(factory: Callable[[], SearchServices] = create_services, warm_on_startup: bool = True) -> FastAPI:
    app = FastAPI(title="Gift Search Service")

    @app.on_event("startup")
    async def startup_event() -> None:
        services = factory()
        app.state.services = services
        if warm_on_startup:
            services.start_background_warming()
        logger.info("Gift search service started")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await app.state.services.aclose()

    @app.get("/health")
    async def health(request: Request) -> dict:
        return _services(request).health()

    @app.get("/search", response_model=SearchResponse)
    async def search(
        request: Request,
        q: str = Query(..., description="Search query"),
        limit: int = Query(settings.default_max_results, ge=1, le=100),
    ) -> SearchResponse:
        if not q.strip():
            raise HTTPException(status_code=400, detail="Query must not be empty")
        start = perf_counter()
        results = await _services(request).search(q, limit)
        return SearchResponse(
            query=q,
            normalized_query=normalize_query(q),
            results=results,
            took_ms=(perf_counter() - start) * 1000,
        )

    @app.get("/categories")
    async def categories(request: Request) -> List[str]:
        return _services(request).registry.available_categories()

    @app.get("/categories/{key}", response_model=CategorySearchResponse)
    async def category_search(
        request: Request,
        key: str,
        term: str = "",
        limit: int = Query(DEFAULT_LIMIT, ge=1, le=100),
        min_price: float | None = None,
        max_price: float | None = None,
    ) -> CategorySearchResponse:
        options = {"limit": limit}
        if min_price is not None:
            options["min_price"] = min_price
        if max_price is not None:
            options["max_price"] = max_price
        start = perf_counter()
        result = await _services(request).search_category(key, term, options)
        return CategorySearchResponse(
            **result.model_dump(),
            term=term,
            took_ms=(perf_counter() - start) * 1000,
        )

    @app.get("/metrics")
    async def metrics(request: Request) -> dict:
        services = _services(request)
        return {**services.orchestrator.metrics(), "tiered_cache": services.tiered_cache.stats()}

    @app.post("/budget/reset")
    async def reset_budget(request: Request) -> dict:
        services = _services(request)
        services.budget.reset()
        return services.budget.snapshot()

    return app


app = create_app()
