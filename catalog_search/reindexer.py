"""Zero-downtime rebuild of the product index.

A run builds a new index generation under a private timestamped name while
search keeps reading the generation behind the stable alias. Only when every
batch has been written is the alias moved, in a single ``update_aliases``
call that removes it from every current holder and adds it to the new
generation. Old generations beyond the retention count are then deleted.

Stages::

    init -> creating_index -> bulk_loading -> swapping_alias -> cleaning_up -> done
                                     (any stage) -> failed

A failure before cutover deletes the half-built generation and leaves the
alias where it was.
"""
from __future__ import annotations

import gc
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from time import perf_counter
from typing import Any, Callable, Dict, Iterable, List, Optional

from elasticsearch import ApiError, Elasticsearch, TransportError, helpers

from .documents import DocumentAssembler
from .errors import ReindexError
from .indexing import (
    DEFAULT_INDEX_BODY,
    alias_targets,
    create_generation,
    delete_index,
    generation_name,
    list_generations,
)

logger = logging.getLogger(__name__)


class ReindexStage(str, Enum):
    INIT = "init"
    CREATING_INDEX = "creating_index"
    BULK_LOADING = "bulk_loading"
    SWAPPING_ALIAS = "swapping_alias"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ReindexReport:
    index_name: str
    stage: ReindexStage = ReindexStage.INIT
    total_products: int = 0
    processed: int = 0
    errors: int = 0
    previous_indices: List[str] = field(default_factory=list)
    deleted_indices: List[str] = field(default_factory=list)
    failed_stage: Optional[ReindexStage] = None
    error: Optional[str] = None
    duration_s: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.stage is ReindexStage.DONE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reindexer:
    def __init__(
        self,
        es: Elasticsearch,
        assembler: DocumentAssembler,
        *,
        alias: str,
        index_prefix: str,
        batch_size: int = 1000,
        keep_generations: int = 3,
        compaction_every: int = 10000,
        index_body: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if keep_generations < 1:
            raise ValueError("keep_generations must be at least 1")
        self._es = es
        self._assembler = assembler
        self._alias = alias
        self._prefix = index_prefix
        self._batch_size = batch_size
        self._keep = keep_generations
        self._compaction_every = compaction_every
        self._index_body = index_body or DEFAULT_INDEX_BODY
        self._clock = clock

    def run(self) -> ReindexReport:
        started = perf_counter()
        report = ReindexReport(index_name=generation_name(self._prefix, self._clock()))
        created = False
        try:
            report.total_products = self._assembler.count_products()
            report.previous_indices = alias_targets(self._es, self._alias)
            logger.info(
                "Reindex started index=%s products=%s alias=%s current=%s",
                report.index_name,
                report.total_products,
                self._alias,
                report.previous_indices,
            )

            report.stage = ReindexStage.CREATING_INDEX
            self._create_index(report.index_name)
            created = True

            report.stage = ReindexStage.BULK_LOADING
            self._bulk_load(report)

            report.stage = ReindexStage.SWAPPING_ALIAS
            self._swap_alias(report.index_name)
            created = False  # live now; never rolled back
            self._verify_alias(report.index_name)

            report.stage = ReindexStage.CLEANING_UP
            report.deleted_indices = self._cleanup()

            report.stage = ReindexStage.DONE
        except Exception as exc:  # the job reports failure instead of crashing
            report.failed_stage = report.stage
            report.stage = ReindexStage.FAILED
            report.error = str(exc)
            logger.exception("Reindex failed during %s", report.failed_stage.value)
            if created:
                self._drop_partial(report.index_name)
        finally:
            report.duration_s = perf_counter() - started

        self._log_report(report)
        return report

    def _create_index(self, name: str) -> None:
        try:
            create_generation(self._es, name, self._index_body)
        except (ApiError, TransportError) as exc:
            raise ReindexError(ReindexStage.CREATING_INDEX.value, str(exc)) from exc

    def _bulk_load(self, report: ReindexReport) -> None:
        since_compaction = 0
        for documents in self._assembler.iter_batches(self._batch_size):
            if not documents:
                continue
            ok, failed = self._write_batch(report.index_name, documents)
            report.processed += len(documents)
            report.errors += failed
            since_compaction += len(documents)
            if since_compaction >= self._compaction_every:
                gc.collect()
                since_compaction = 0
            logger.info(
                "Indexed %s/%s products (batch ok=%s failed=%s)",
                report.processed,
                report.total_products,
                ok,
                failed,
            )
        try:
            self._es.indices.refresh(index=report.index_name)
        except (ApiError, TransportError) as exc:
            raise ReindexError(ReindexStage.BULK_LOADING.value, f"refresh failed: {exc}") from exc

    def _write_batch(self, index: str, documents: List[Dict[str, Any]]) -> tuple[int, int]:
        """Write one batch; per-document rejections are counted, not raised."""

        try:
            ok, errors = helpers.bulk(
                self._es,
                self._actions(index, documents),
                raise_on_error=False,
                stats_only=False,
            )
        except (ApiError, TransportError) as exc:
            raise ReindexError(ReindexStage.BULK_LOADING.value, str(exc)) from exc
        for item in errors:
            details = item.get("index", item)
            logger.error("Index error for ID %s: %s", details.get("_id"), details.get("error"))
        return ok, len(errors)

    @staticmethod
    def _actions(index: str, documents: Iterable[Dict[str, Any]]) -> Iterable[dict]:
        for document in documents:
            yield {
                "_op_type": "index",
                "_index": index,
                "_id": document["product_id"],
                "_source": document,
            }

    def _swap_alias(self, new_index: str) -> None:
        current = alias_targets(self._es, self._alias)
        actions: List[dict] = [{"remove": {"index": name, "alias": self._alias}} for name in current]
        actions.append({"add": {"index": new_index, "alias": self._alias}})
        try:
            response = self._es.indices.update_aliases(actions=actions)
            if not response.get("acknowledged"):
                raise ReindexError(ReindexStage.SWAPPING_ALIAS.value, "alias update not acknowledged")
            logger.info("Alias %s moved %s -> %s", self._alias, current or "(none)", new_index)
        except (ApiError, TransportError, ReindexError) as exc:
            logger.warning("Atomic alias swap failed (%s); adding alias directly", exc)
            self._force_alias(new_index, current)

    def _verify_alias(self, new_index: str) -> None:
        try:
            targets = alias_targets(self._es, self._alias)
        except (ApiError, TransportError) as exc:
            logger.warning("Could not verify alias %s after the swap: %s", self._alias, exc)
            return
        if new_index not in targets:
            logger.warning("Alias %s does not point at %s after the swap", self._alias, new_index)

    def _force_alias(self, new_index: str, previous: List[str]) -> None:
        try:
            self._es.indices.put_alias(index=new_index, name=self._alias)
        except (ApiError, TransportError) as exc:
            raise ReindexError(ReindexStage.SWAPPING_ALIAS.value, str(exc)) from exc
        # The alias briefly resolves to old and new generations; shrink that window.
        for name in previous:
            if name == new_index:
                continue
            try:
                self._es.indices.delete_alias(index=name, name=self._alias)
            except (ApiError, TransportError) as exc:
                logger.warning("Could not detach alias %s from %s: %s", self._alias, name, exc)

    def _cleanup(self) -> List[str]:
        """Delete generations beyond the retention count, never the live one."""

        try:
            generations = list_generations(self._es, self._prefix)
            live = set(alias_targets(self._es, self._alias))
        except (ApiError, TransportError) as exc:
            logger.warning("Skipping cleanup, cannot list generations: %s", exc)
            return []

        deleted: List[str] = []
        for name in generations[self._keep:]:
            if name in live:
                continue
            try:
                delete_index(self._es, name)
                deleted.append(name)
            except (ApiError, TransportError) as exc:
                logger.warning("Could not delete old index %s: %s", name, exc)
        if not deleted:
            logger.info("No old generations to delete")
        return deleted

    def _drop_partial(self, name: str) -> None:
        try:
            delete_index(self._es, name)
            logger.info("Partially built index %s deleted", name)
        except (ApiError, TransportError) as exc:
            logger.warning("Could not delete partial index %s: %s", name, exc)

    @staticmethod
    def _log_report(report: ReindexReport) -> None:
        speed = report.processed / report.duration_s if report.duration_s > 0 else 0.0
        level = logging.INFO if report.succeeded else logging.ERROR
        logger.log(
            level,
            "Reindex %s index=%s processed=%s errors=%s deleted=%s duration=%.1fs speed=%.0f/s error=%s",
            report.stage.value,
            report.index_name,
            report.processed,
            report.errors,
            report.deleted_indices,
            report.duration_s,
            speed,
            report.error,
        )
