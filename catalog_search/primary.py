"""Ranked product search against the primary engine."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

from elasticsearch import ApiError, ConnectionTimeout, Elasticsearch, TransportError
from pydantic import ValidationError

from .errors import ErrorKind, SearchFailure
from .models import ProductSummary, SearchOutcome, SearchRequest, SearchResult, SearchSource, SortOrder

logger = logging.getLogger(__name__)

# Cyrillic "х" is routinely typed for the "x" in dimension codes ("3х2.5").
_DIMENSION_X = str.maketrans({"х": "x", "Х": "X"})
# Mirrors the code_normalizer char filter of the index mapping.
_CODE_SEPARATORS_RE = re.compile(r"[\s\-._/,]+")

MIN_SCORE = 1.0
HIGHLIGHT_FIELDS = ("name", "external_id", "sku")

LISTING_SORT = {
    SortOrder.NAME: [{"name.keyword": "asc"}],
    SortOrder.EXTERNAL_ID: [{"external_id.keyword": "asc"}],
    SortOrder.POPULARITY: [{"popularity_score": "desc"}, {"product_id": "desc"}],
}


def normalize_dimension_query(query: str) -> str:
    return query.translate(_DIMENSION_X)


def build_query(request: SearchRequest, server_timeout: str = "10s") -> Dict[str, Any]:
    """Build the search body for a request.

    Identifier hits dominate the ranking; the fuzzy name clause only catches
    typos and is kept in check by ``min_score``.
    """

    body: Dict[str, Any] = {
        "timeout": server_timeout,
        "size": request.page_size,
        "from": request.offset,
        "track_total_hits": True,
        "_source": True,
    }
    query = normalize_dimension_query(request.query.strip())
    if not query:
        body["query"] = {"match_all": {}}
        body["sort"] = LISTING_SORT.get(request.sort, [{"product_id": "desc"}])
        return body

    code_prefix = _CODE_SEPARATORS_RE.sub("", query.lower())
    should: List[dict] = [
        {"term": {"external_id.keyword": {"value": query, "boost": 100}}},
        {"term": {"sku.keyword": {"value": query, "boost": 90}}},
    ]
    if code_prefix:
        should.append({"prefix": {"external_id": {"value": code_prefix, "boost": 50}}})
    should.extend(
        [
            {"match_phrase": {"name": {"query": query, "slop": 2, "boost": 30}}},
            {
                "match": {
                    "name": {
                        "query": query,
                        "fuzziness": "AUTO",
                        "prefix_length": 2,
                        "boost": 10,
                    }
                }
            },
            {"match": {"brand_name": {"query": query, "boost": 5}}},
        ]
    )
    body["query"] = {"bool": {"should": should, "minimum_should_match": 1}}
    body["min_score"] = MIN_SCORE
    body["highlight"] = {
        "fields": {field: {"number_of_fragments": 0} for field in HIGHLIGHT_FIELDS},
        "pre_tags": ["<mark>"],
        "post_tags": ["</mark>"],
    }
    body["sort"] = [{"_score": "desc"}, {"product_id": "asc"}]
    return body


def _parse_hits(response: Any) -> tuple[List[ProductSummary], int]:
    hits_section = response["hits"]
    products: List[ProductSummary] = []
    for hit in hits_section.get("hits", []):
        source = dict(hit.get("_source") or {})
        source["score"] = hit.get("_score") or 0.0
        if hit.get("highlight"):
            source["highlight"] = hit["highlight"]
        products.append(ProductSummary(**source))
    total = hits_section.get("total", 0)
    if isinstance(total, dict):
        total = total.get("value", 0)
    return products, int(total)


class PrimaryEngineAdapter:
    """Runs a boosted multi-clause query against the aliased product index."""

    def __init__(self, client: Elasticsearch, index: str, *, request_timeout: float = 5.0) -> None:
        self._client = client
        self._index = index
        self._request_timeout = request_timeout

    def search(self, request: SearchRequest) -> SearchOutcome:
        body = build_query(request)
        logger.debug("ES query payload=%s", body)
        try:
            response = self._client.options(request_timeout=self._request_timeout).search(
                index=self._index, body=body
            )
        except ConnectionTimeout as exc:
            logger.warning("primary search timed out q=%r: %s", request.query, exc)
            return SearchOutcome(failure=SearchFailure(ErrorKind.TIMEOUT, str(exc)))
        except (ApiError, TransportError) as exc:
            logger.warning("primary search failed q=%r: %s", request.query, exc)
            return SearchOutcome(failure=SearchFailure(ErrorKind.TRANSPORT, str(exc)))

        try:
            products, total = _parse_hits(response)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            logger.warning("primary search returned a malformed response q=%r: %s", request.query, exc)
            return SearchOutcome(failure=SearchFailure(ErrorKind.MALFORMED, str(exc)))

        logger.info(
            "primary search q=%r total=%s returned=%s took=%sms",
            request.query,
            total,
            len(products),
            response.get("took", 0),
        )
        result = SearchResult(
            items=products,
            total=total,
            page=request.page,
            page_size=request.page_size,
            source=SearchSource.PRIMARY,
        )
        return SearchOutcome(result=result)
