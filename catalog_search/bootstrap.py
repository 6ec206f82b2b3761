"""Composition root: logging setup and construction of shared services.

Every long-lived handle (engine client, database engine, availability probe,
cache) is built here exactly once and passed explicitly to the components
that use it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from elasticsearch import Elasticsearch
from sqlalchemy.engine import Engine

from .availability import AvailabilityProbe
from .cache import CacheBackend, create_cache
from .config import Settings
from .database import create_db_engine
from .documents import DocumentAssembler
from .es_client import create_client
from .indexing import load_index_body
from .orchestrator import SearchOrchestrator
from .primary import PrimaryEngineAdapter
from .reindexer import Reindexer
from .relational import RelationalFallbackSearch

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.upper())
    # ``force=True`` replaces uvicorn's default handlers so every module logs
    # in the same format.
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "elastic_transport"):
        logging.getLogger(name).setLevel(level)
    logging.getLogger(__name__).info("Logging configured at %s", level_name.upper())


@dataclass
class SearchServices:
    es: Elasticsearch
    db: Engine
    probe: AvailabilityProbe
    orchestrator: SearchOrchestrator
    cache: Optional[CacheBackend] = None

    def close(self) -> None:
        self.es.close()
        self.db.dispose()


def build_probe(es: Elasticsearch, settings: Settings) -> AvailabilityProbe:
    return AvailabilityProbe(
        es,
        success_ttl=settings.probe_success_ttl,
        failure_ttl=settings.probe_failure_ttl,
        failure_threshold=settings.probe_failure_threshold,
        backoff_offset=settings.probe_backoff_offset,
        health_timeout=settings.health_timeout,
    )


def build_search_services(
    settings: Settings,
    *,
    es: Optional[Elasticsearch] = None,
    db: Optional[Engine] = None,
    cache: Optional[CacheBackend] = None,
) -> SearchServices:
    es = es if es is not None else create_client(settings)
    db = db if db is not None else create_db_engine(settings.database_url)
    if cache is None:
        cache = create_cache(settings)
    probe = build_probe(es, settings)
    orchestrator = SearchOrchestrator(
        PrimaryEngineAdapter(es, settings.es_alias, request_timeout=settings.es_request_timeout),
        RelationalFallbackSearch(db),
        probe,
        timeout_seconds=settings.search_timeout_seconds,
        cache=cache,
        cache_ttl_seconds=settings.cache_ttl_seconds,
    )
    return SearchServices(es=es, db=db, probe=probe, orchestrator=orchestrator, cache=cache)


def build_reindexer(settings: Settings, *, es: Elasticsearch, db: Engine) -> Reindexer:
    return Reindexer(
        es,
        DocumentAssembler(db),
        alias=settings.es_alias,
        index_prefix=settings.es_index_prefix,
        batch_size=settings.reindex_batch_size,
        keep_generations=settings.reindex_keep_generations,
        compaction_every=settings.reindex_compaction_every,
        index_body=load_index_body(settings.mapping_path),
    )
