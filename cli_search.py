"""Terminal client that reuses the in-process search services."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Iterable, List

from giftsearch.models import ProductRecord
from giftsearch.services import SearchServices, create_services

MAX_RESULTS = 20
GREEN = "\033[92m"
RED = "\033[91m"
RESET = "\033[0m"


async def perform_query(services: SearchServices, query: str, category: str | None) -> List[ProductRecord]:
    if category:
        result = await services.search_category(category, query, {"limit": MAX_RESULTS})
        if result.error:
            print(f"{RED}category search failed: {result.error}{RESET}")
        return result.results
    return await services.search(query, MAX_RESULTS)


def pretty_print_response(query: str, results: List[ProductRecord], eta_ms: float) -> None:
    color = GREEN if eta_ms < 200 else RED
    print(f"Query: {query} | results: {len(results)} | ETA: {color}{eta_ms:.1f} ms{RESET}")
    for idx, item in enumerate(results[:MAX_RESULTS], start=1):
        price = f"${item.price:.2f}" if item.price is not None else "-"
        print(f"  {idx:02d}. {price:>9} | {item.brand or '-'} | {item.title} [{item.source}]")


async def run_queries(services: SearchServices, queries: Iterable[str], category: str | None) -> None:
    loop = asyncio.get_running_loop()
    for query in queries:
        start = loop.time()
        results = await perform_query(services, query, category)
        pretty_print_response(query, results, (loop.time() - start) * 1000)


async def interactive_shell(services: SearchServices, category: str | None) -> None:
    print("Interactive gift search. Type 'exit' to quit.")
    while True:
        try:
            query = (await asyncio.to_thread(input, "> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return
        if not query:
            continue
        if query.lower() in {"exit", "quit"}:
            return
        await run_queries(services, [query], category)


def _read_batch(file_path: Path) -> List[str]:
    with file_path.open("r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip()]


async def _main(args: argparse.Namespace) -> None:
    services = create_services()
    try:
        if args.batch:
            await run_queries(services, _read_batch(args.batch), args.category)
        elif args.query:
            await run_queries(services, [args.query], args.category)
        else:
            await interactive_shell(services, args.category)
        if args.stats:
            metrics = services.orchestrator.metrics()
            print(
                f"searches={metrics['total_searches']} hit_rate={metrics['cache_hit_rate']}% "
                f"upstream={metrics['upstream_calls']} spent={metrics['budget']['spent']}"
            )
    finally:
        await services.aclose()


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="CLI client for the gift search service")
    parser.add_argument("query", nargs="?", help="Query string. If omitted, starts REPL mode.")
    parser.add_argument("--batch", type=Path, help="File with queries to execute line by line")
    parser.add_argument("--category", help="Browse a category instead of free-text search")
    parser.add_argument("--stats", action="store_true", help="Print search metrics before exiting")
    args = parser.parse_args(list(argv) if argv is not None else None)
    asyncio.run(_main(args))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
