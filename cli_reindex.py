"""Operator entry point: rebuild the product index and move the alias."""
from __future__ import annotations

import argparse
import socket
from typing import Iterable

from catalog_search.bootstrap import build_reindexer, setup_logging
from catalog_search.config import settings
from catalog_search.database import create_db_engine
from catalog_search.es_client import create_client
from catalog_search.reindexer import ReindexReport


def print_report(report: ReindexReport) -> None:
    print("=" * 60)
    print(f"Index:      {report.index_name}")
    print(f"Stage:      {report.stage.value}")
    print(f"Processed:  {report.processed}/{report.total_products}")
    print(f"Errors:     {report.errors}")
    print(f"Previous:   {', '.join(report.previous_indices) or '-'}")
    print(f"Deleted:    {', '.join(report.deleted_indices) or '-'}")
    print(f"Duration:   {report.duration_s:.1f}s")
    if report.error:
        print(f"Failed at:  {report.failed_stage.value if report.failed_stage else '-'}")
        print(f"Error:      {report.error}")
    else:
        print(f"Alias:      {settings.es_alias} -> {report.index_name}")
    print("=" * 60)


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Rebuild the product index from the relational store. "
        "Batch size and retention come from REINDEX_BATCH_SIZE / REINDEX_KEEP_GENERATIONS."
    )
    parser.parse_args(list(argv) if argv is not None else None)

    setup_logging(settings.log_level)
    print(f"Reindex on {socket.gethostname()} alias={settings.es_alias} batch={settings.reindex_batch_size}")
    es = create_client(settings)
    db = create_db_engine(settings.database_url)
    try:
        report = build_reindexer(settings, es=es, db=db).run()
    finally:
        es.close()
        db.dispose()
    print_report(report)
    return 0 if report.succeeded else 1


if __name__ == "__main__":
    raise SystemExit(main())
