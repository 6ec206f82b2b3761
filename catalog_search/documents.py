"""Builds denormalised search documents from the relational catalog.

Only static product data is indexed: names, identifiers, brand and series,
categories, images, attributes, document counts and popularity. Prices and
stock are loaded per customer at request time and never end up in the index.

Products are read in keyset-paged batches; related rows for a whole batch are
fetched with one ``IN`` query per table instead of one query per product.
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterator, List, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

DEFAULT_UNIT = "шт"
DOCUMENT_TYPES = ("certificates", "manuals", "drawings")
SUGGEST_WEIGHTS = (
    ("name", 100),
    ("external_id", 95),
    ("sku", 90),
    ("brand_name", 70),
)

_WHITESPACE_RE = re.compile(r"\s+")

PRODUCT_BATCH_SQL = text(
    """
    SELECT
        p.product_id, p.external_id, p.sku, p.name, p.description,
        p.unit, p.min_sale, p.weight, p.dimensions,
        p.created_at, p.updated_at, p.brand_id, p.series_id,
        b.name AS brand_name, s.name AS series_name
    FROM products p
    LEFT JOIN brands b ON p.brand_id = b.brand_id
    LEFT JOIN series s ON p.series_id = s.series_id
    WHERE p.product_id > :after_id
    ORDER BY p.product_id
    LIMIT :limit
    """
)

CATEGORIES_SQL = text(
    """
    SELECT pc.product_id, c.category_id, c.name
    FROM product_categories pc
    JOIN categories c ON pc.category_id = c.category_id
    WHERE pc.product_id IN :ids
    ORDER BY pc.product_id, c.category_id
    """
).bindparams(bindparam("ids", expanding=True))

IMAGES_SQL = text(
    """
    SELECT product_id, url
    FROM product_images
    WHERE product_id IN :ids
    ORDER BY product_id, is_main DESC, sort_order ASC
    """
).bindparams(bindparam("ids", expanding=True))

ATTRIBUTES_SQL = text(
    """
    SELECT product_id, name, value, unit
    FROM product_attributes
    WHERE product_id IN :ids
    ORDER BY product_id, sort_order
    """
).bindparams(bindparam("ids", expanding=True))

DOCUMENTS_SQL = text(
    """
    SELECT product_id, type, COUNT(*) AS doc_count
    FROM product_documents
    WHERE product_id IN :ids
    GROUP BY product_id, type
    """
).bindparams(bindparam("ids", expanding=True))

METRICS_SQL = text(
    """
    SELECT product_id, popularity_score
    FROM product_metrics
    WHERE product_id IN :ids
    """
).bindparams(bindparam("ids", expanding=True))


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def _format_date(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    try:
        return datetime.fromisoformat(str(value)).isoformat()
    except ValueError:
        return str(value)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def build_search_text(product: Dict[str, Any]) -> str:
    parts: List[Any] = [
        product.get("name"),
        product.get("external_id"),
        product.get("sku"),
        product.get("brand_name"),
        product.get("series_name"),
        product.get("description"),
    ]
    parts.extend(product.get("category_names") or [])
    parts.extend(attr.get("value") for attr in product.get("attributes") or [])
    return normalize_text(" ".join(str(part) for part in parts if part))


def build_suggest(product: Dict[str, Any]) -> List[Dict[str, Any]]:
    suggestions = []
    for field, weight in SUGGEST_WEIGHTS:
        value = normalize_text(product.get(field))
        if value:
            suggestions.append({"input": [value], "weight": weight})
    return suggestions


def prepare_document(product: Dict[str, Any]) -> Dict[str, Any]:
    """Project a joined product row onto the index document shape.

    ``product`` carries the base row plus ``category_ids``, ``category_names``,
    ``images``, ``attributes``, ``documents`` and ``popularity_score``.
    Empty values are dropped instead of being written as null.
    """

    description = normalize_text(product.get("description"))
    images = list(product.get("images") or [])
    doc: Dict[str, Any] = {
        "product_id": int(product["product_id"]),
        "external_id": normalize_text(product.get("external_id")),
        "sku": normalize_text(product.get("sku")),
        "name": normalize_text(product.get("name")),
        "description": description,
        "unit": product.get("unit") or DEFAULT_UNIT,
        "min_sale": int(product.get("min_sale") or 1),
        "weight": float(product.get("weight") or 0),
        "dimensions": product.get("dimensions"),
        "created_at": _format_date(product.get("created_at")),
        "updated_at": _format_date(product.get("updated_at")),
        "brand_id": product.get("brand_id"),
        "brand_name": normalize_text(product.get("brand_name")),
        "series_id": product.get("series_id"),
        "series_name": normalize_text(product.get("series_name")),
        "categories": list(product.get("category_names") or []),
        "category_ids": list(product.get("category_ids") or []),
        "images": images,
        "attributes": [
            {key: value for key, value in attr.items() if value is not None}
            for attr in product.get("attributes") or []
        ],
        "documents": product.get("documents"),
        "search_text": build_search_text(product),
        "suggest": build_suggest(product),
        "popularity_score": float(product.get("popularity_score") or 0.0),
        "has_images": bool(images),
        "has_description": bool(description),
    }
    return {key: value for key, value in doc.items() if not _is_empty(value)}


class DocumentAssembler:
    """Reads products from the relational store and yields index documents."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def count_products(self) -> int:
        with self._engine.connect() as conn:
            return int(conn.execute(text("SELECT COUNT(*) FROM products")).scalar() or 0)

    def iter_batches(self, batch_size: int) -> Iterator[List[Dict[str, Any]]]:
        """Yield lists of at most ``batch_size`` documents in product id order."""

        after_id = 0
        while True:
            with self._engine.connect() as conn:
                rows = [
                    dict(row._mapping)
                    for row in conn.execute(PRODUCT_BATCH_SQL, {"after_id": after_id, "limit": batch_size})
                ]
                if not rows:
                    return
                documents = self.assemble(conn, rows)
            after_id = rows[-1]["product_id"]
            yield documents
            if len(rows) < batch_size:
                return

    def assemble(self, conn: Connection, rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ids = [row["product_id"] for row in rows]
        category_ids: Dict[int, List[int]] = defaultdict(list)
        category_names: Dict[int, List[str]] = defaultdict(list)
        for row in conn.execute(CATEGORIES_SQL, {"ids": ids}):
            category_ids[row.product_id].append(int(row.category_id))
            category_names[row.product_id].append(row.name)

        images: Dict[int, List[str]] = defaultdict(list)
        for row in conn.execute(IMAGES_SQL, {"ids": ids}):
            images[row.product_id].append(row.url)

        attributes: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        for row in conn.execute(ATTRIBUTES_SQL, {"ids": ids}):
            attributes[row.product_id].append({"name": row.name, "value": row.value, "unit": row.unit})

        documents: Dict[int, Dict[str, int]] = {}
        for row in conn.execute(DOCUMENTS_SQL, {"ids": ids}):
            counts = documents.setdefault(row.product_id, dict.fromkeys(DOCUMENT_TYPES, 0))
            # certificate -> certificates
            counts[f"{row.type}s"] = int(row.doc_count)

        popularity = {row.product_id: row.popularity_score for row in conn.execute(METRICS_SQL, {"ids": ids})}

        assembled = []
        for row in rows:
            product_id = row["product_id"]
            product = dict(row)
            product["category_ids"] = category_ids.get(product_id, [])
            product["category_names"] = category_names.get(product_id, [])
            product["images"] = images.get(product_id, [])
            product["attributes"] = attributes.get(product_id, [])
            product["documents"] = documents.get(product_id, dict.fromkeys(DOCUMENT_TYPES, 0))
            product["popularity_score"] = popularity.get(product_id) or 0.0
            assembled.append(prepare_document(product))
        logger.debug("Assembled %s documents (ids %s..%s)", len(assembled), ids[0], ids[-1])
        return assembled
