"""Terminal client that reuses the in-process search logic."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Iterable

from catalog_search.bootstrap import SearchServices, build_search_services, setup_logging
from catalog_search.config import settings
from catalog_search.models import SearchRequest, SearchResult

MAX_RESULTS = 100
GREEN = "\033[92m"
RED = "\033[91m"
RESET = "\033[0m"


async def perform_query(services: SearchServices, query: str, sort: str) -> SearchResult:
    request = SearchRequest(q=query, limit=MAX_RESULTS, sort=sort)
    return await services.orchestrator.search(request)


def pretty_print_response(query: str, result: SearchResult) -> None:
    diagnostics = result.diagnostics
    eta = diagnostics.duration_ms if diagnostics else 0.0
    color = GREEN if eta < 200 else RED
    eta_label = f"{color}{eta:.1f} ms{RESET}"
    route = diagnostics.route if diagnostics else "-"
    print(f"Query: {query} | total: {result.total} | route: {route} | ETA: {eta_label}")
    if result.error_code:
        print(f"  {RED}{result.error_code}{RESET}: {result.error}")
        return
    for idx, item in enumerate(result.items[:MAX_RESULTS], start=1):
        score_repr = f"{item.score:.2f}" if item.score is not None else "-"
        print(f"  {idx:02d}. score={score_repr} | {item.brand_name} | {item.external_id} | {item.name}")


def interactive_shell(services: SearchServices, sort: str) -> None:
    print(f"Catalog search, sort={sort}. Empty line or Ctrl-D to quit.")
    while True:
        try:
            line = input("search> ")
        except (EOFError, KeyboardInterrupt):
            print()
            break
        query = line.strip()
        if not query or query.lower() in {"exit", "quit", ":q"}:
            break
        pretty_print_response(query, asyncio.run(perform_query(services, query, sort)))


def batch_mode(services: SearchServices, file_path: Path, sort: str) -> None:
    with file_path.open("r", encoding="utf-8") as fh:
        for line in fh:
            query = line.strip()
            if not query:
                continue
            pretty_print_response(query, asyncio.run(perform_query(services, query, sort)))


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="CLI client for the search service")
    parser.add_argument("query", nargs="?", help="Query string. If omitted, starts REPL mode.")
    parser.add_argument("--batch", type=Path, help="File with queries to execute line by line")
    parser.add_argument("--sort", default="relevance", help="relevance | name | external_id | popularity")
    args = parser.parse_args(list(argv) if argv is not None else None)

    setup_logging(settings.log_level)
    services = build_search_services(settings)
    try:
        if args.batch:
            batch_mode(services, args.batch, args.sort)
        elif args.query:
            pretty_print_response(args.query, asyncio.run(perform_query(services, args.query, args.sort)))
        else:
            interactive_shell(services, args.sort)
    finally:
        services.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
