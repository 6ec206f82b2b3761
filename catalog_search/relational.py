"""Keyword search over the relational catalog, used when the engine is not.

The query is expanded into variants (see :mod:`catalog_search.variants`) and
matched against identifiers, names, descriptions and brand names with plain
``LIKE`` predicates. Relevance is a fixed ladder evaluated against the
original query only, so a variant can widen recall but never outrank an exact
hit on what the user actually typed.

The page window and the total match count come from one statement
(``COUNT(*) OVER ()``), so both are read from the same snapshot.
"""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Dict, List, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import ErrorKind, SearchFailure
from .models import ProductSummary, SearchOutcome, SearchRequest, SearchResult, SearchSource, SortOrder
from .variants import generate_variants

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "!"

SELECT_COLUMNS = """
    p.product_id, p.external_id, p.sku, p.name, p.description,
    p.brand_id, p.series_id, p.unit, p.min_sale, p.weight, p.dimensions,
    b.name AS brand_name, s.name AS series_name
"""

FROM_CLAUSE = """
    FROM products p
    LEFT JOIN brands b ON p.brand_id = b.brand_id
    LEFT JOIN series s ON p.series_id = s.series_id
    LEFT JOIN product_metrics m ON m.product_id = p.product_id
"""

RELEVANCE_CASE = f"""
    CASE
        WHEN p.external_id = :original_q THEN 1000
        WHEN p.sku = :original_q THEN 900
        WHEN p.external_id LIKE :original_prefix ESCAPE '{LIKE_ESCAPE}' THEN 100
        WHEN p.sku LIKE :original_prefix ESCAPE '{LIKE_ESCAPE}' THEN 90
        WHEN p.name = :original_q THEN 80
        WHEN p.name LIKE :original_prefix ESCAPE '{LIKE_ESCAPE}' THEN 50
        WHEN p.name LIKE :original_search ESCAPE '{LIKE_ESCAPE}' THEN 30
        ELSE 1
    END
"""

ORDER_BY = {
    SortOrder.NAME: "p.name ASC, p.product_id ASC",
    SortOrder.EXTERNAL_ID: "p.external_id ASC, p.product_id ASC",
    SortOrder.POPULARITY: "COALESCE(m.popularity_score, 0) DESC, p.product_id DESC",
}
RELEVANCE_ORDER = "relevance_score DESC, p.name ASC, p.product_id ASC"
LISTING_ORDER = "p.product_id DESC"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input is matched literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def _variant_clause(index: int, variant: str, params: Dict[str, Any]) -> str:
    exact_key = f"exact_{index}"
    prefix_key = f"prefix_{index}"
    search_key = f"search_{index}"
    escaped = escape_like(variant)
    params[exact_key] = variant
    params[prefix_key] = f"{escaped}%"
    params[search_key] = f"%{escaped}%"
    escape = f"ESCAPE '{LIKE_ESCAPE}'"
    return (
        f"(p.external_id = :{exact_key} OR p.sku = :{exact_key}"
        f" OR p.external_id LIKE :{prefix_key} {escape} OR p.sku LIKE :{prefix_key} {escape}"
        f" OR p.name LIKE :{search_key} {escape} OR p.description LIKE :{search_key} {escape}"
        f" OR b.name LIKE :{search_key} {escape})"
    )


def build_sql(request: SearchRequest, variants: List[str]) -> Tuple[str, str, Dict[str, Any]]:
    """Return ``(select_sql, count_sql, params)`` for a request.

    An empty variant list means listing mode: no filter and a flat score.
    """

    params: Dict[str, Any] = {"limit": request.page_size, "offset": request.offset}
    if variants:
        where = " OR ".join(_variant_clause(idx, variant, params) for idx, variant in enumerate(variants))
        where_sql = f"WHERE ({where})"
        original = request.query
        escaped = escape_like(original)
        params["original_q"] = original
        params["original_prefix"] = f"{escaped}%"
        params["original_search"] = f"%{escaped}%"
        score_sql = RELEVANCE_CASE
        default_order = RELEVANCE_ORDER
    else:
        where_sql = ""
        score_sql = "1"
        default_order = LISTING_ORDER

    order_sql = ORDER_BY.get(request.sort, default_order)
    select_sql = (
        f"SELECT {SELECT_COLUMNS}, {score_sql} AS relevance_score, COUNT(*) OVER () AS total_count"
        f" {FROM_CLAUSE} {where_sql} ORDER BY {order_sql} LIMIT :limit OFFSET :offset"
    )
    count_sql = f"SELECT COUNT(*) {FROM_CLAUSE} {where_sql}"
    return select_sql, count_sql, params


def _row_to_product(row: Any) -> ProductSummary:
    mapping = dict(row._mapping)
    score = mapping.pop("relevance_score", None)
    mapping.pop("total_count", None)
    return ProductSummary(**mapping, score=float(score) if score is not None else None)


class RelationalFallbackSearch:
    """Scored ``LIKE`` search over products joined with brands and series."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def search(self, request: SearchRequest) -> SearchOutcome:
        variants = generate_variants(request.query) if request.query else []
        try:
            items, total = self._execute(request, variants)
        except SQLAlchemyError as exc:
            logger.error("relational search failed q=%r: %s", request.query, exc)
            return SearchOutcome(failure=SearchFailure(ErrorKind.STORE, str(exc)))

        result = SearchResult(
            items=items,
            total=total,
            page=request.page,
            page_size=request.page_size,
            source=SearchSource.RELATIONAL,
            search_variants=variants,
        )
        return SearchOutcome(result=result)

    def _execute(self, request: SearchRequest, variants: List[str]) -> Tuple[List[ProductSummary], int]:
        select_sql, count_sql, params = build_sql(request, variants)
        t0 = perf_counter()
        # One connection and one transaction: the window and any follow-up
        # count observe the same data.
        with self._engine.connect() as conn, conn.begin():
            rows = conn.execute(text(select_sql), params).fetchall()
            if rows:
                total = int(rows[0]._mapping["total_count"])
            else:
                total = self._count_past_window(conn, count_sql, params, request)
        items = [_row_to_product(row) for row in rows]
        logger.info(
            "relational search q=%r variants=%s sort=%s found=%s total=%s took=%.2fms",
            request.query,
            variants,
            request.sort.value,
            len(items),
            total,
            (perf_counter() - t0) * 1000,
        )
        return items, total

    @staticmethod
    def _count_past_window(conn: Connection, count_sql: str, params: Dict[str, Any], request: SearchRequest) -> int:
        if request.offset == 0:
            return 0
        count_params = {
            key: value
            for key, value in params.items()
            if key not in {"limit", "offset"} and not key.startswith("original_")
        }
        return int(conn.execute(text(count_sql), count_params).scalar() or 0)
