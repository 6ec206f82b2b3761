"""Index generation naming, mapping and alias helpers."""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from elasticsearch import Elasticsearch, NotFoundError

logger = logging.getLogger(__name__)

GENERATION_FORMAT = "%Y_%m_%d_%H_%M_%S_%f"
_GENERATION_SUFFIX_RE = re.compile(r"\d{4}_\d{2}_\d{2}_\d{2}_\d{2}_\d{2}_\d{6}")

_TEXT_WITH_KEYWORD = {
    "type": "text",
    "analyzer": "text_analyzer",
    "fields": {"keyword": {"type": "keyword"}},
}
_CODE_WITH_KEYWORD = {
    "type": "text",
    "analyzer": "code_analyzer",
    "fields": {"keyword": {"type": "keyword"}},
}

DEFAULT_INDEX_BODY: Dict[str, Any] = {
    "settings": {
        "number_of_shards": 1,
        "number_of_replicas": 1,
        "index.refresh_interval": "30s",
        "analysis": {
            "char_filter": {
                "code_normalizer": {
                    "type": "pattern_replace",
                    "pattern": "[\\s\\-\\._/,]+",
                    "replacement": "",
                }
            },
            "analyzer": {
                "text_analyzer": {
                    "tokenizer": "standard",
                    "filter": ["lowercase", "russian_stemmer"],
                },
                "code_analyzer": {
                    "tokenizer": "keyword",
                    "char_filter": ["code_normalizer"],
                    "filter": ["lowercase"],
                },
            },
            "filter": {"russian_stemmer": {"type": "stemmer", "language": "russian"}},
        },
    },
    "mappings": {
        "properties": {
            "product_id": {"type": "long"},
            "external_id": _CODE_WITH_KEYWORD,
            "sku": _CODE_WITH_KEYWORD,
            "name": _TEXT_WITH_KEYWORD,
            "description": {"type": "text", "analyzer": "text_analyzer"},
            "search_text": {"type": "text", "analyzer": "text_analyzer"},
            "unit": {"type": "keyword"},
            "min_sale": {"type": "integer"},
            "weight": {"type": "float"},
            "dimensions": {"type": "keyword"},
            "brand_id": {"type": "integer"},
            "brand_name": _TEXT_WITH_KEYWORD,
            "series_id": {"type": "integer"},
            "series_name": _TEXT_WITH_KEYWORD,
            "categories": _TEXT_WITH_KEYWORD,
            "category_ids": {"type": "integer"},
            "images": {"type": "keyword"},
            "documents": {
                "type": "object",
                "properties": {
                    "certificates": {"type": "integer"},
                    "manuals": {"type": "integer"},
                    "drawings": {"type": "integer"},
                },
            },
            "attributes": {
                "type": "nested",
                "properties": {
                    "name": {"type": "keyword"},
                    "value": {"type": "text"},
                    "unit": {"type": "keyword"},
                },
            },
            "popularity_score": {"type": "float"},
            "has_images": {"type": "boolean"},
            "has_description": {"type": "boolean"},
            "created_at": {"type": "date"},
            "updated_at": {"type": "date"},
            "suggest": {"type": "completion", "analyzer": "text_analyzer"},
        }
    },
}


def load_index_body(mapping_path: str | None) -> Dict[str, Any]:
    """Read index settings/mappings from a JSON file, or use the built-in ones."""

    if not mapping_path:
        return DEFAULT_INDEX_BODY
    path = Path(mapping_path)
    if not path.exists():
        logger.warning("Mapping file %s not found; using built-in mapping", path)
        return DEFAULT_INDEX_BODY
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def generation_name(prefix: str, created_at: datetime) -> str:
    return f"{prefix}{created_at.strftime(GENERATION_FORMAT)}"


def is_generation(prefix: str, name: str) -> bool:
    return name.startswith(prefix) and bool(_GENERATION_SUFFIX_RE.fullmatch(name[len(prefix):]))


def generation_created_at(prefix: str, name: str) -> datetime:
    return datetime.strptime(name[len(prefix):], GENERATION_FORMAT)


def list_generations(es: Elasticsearch, prefix: str) -> List[str]:
    """Generation names, newest first. Unrelated indices sharing the prefix are ignored."""

    indices = es.indices.get(index=f"{prefix}*")
    names = [name for name in indices.keys() if is_generation(prefix, name)]
    return sorted(names, key=lambda name: generation_created_at(prefix, name), reverse=True)


def alias_targets(es: Elasticsearch, alias: str) -> List[str]:
    """Indices currently holding ``alias``; empty when the alias does not exist."""

    try:
        response = es.indices.get_alias(name=alias)
    except NotFoundError:
        return []
    return sorted(response.keys())


def create_generation(es: Elasticsearch, name: str, body: Dict[str, Any]) -> None:
    logger.info("Creating index %s", name)
    es.indices.create(index=name, settings=body.get("settings"), mappings=body.get("mappings"))


def delete_index(es: Elasticsearch, name: str) -> None:
    logger.info("Deleting index %s", name)
    es.indices.delete(index=name)
