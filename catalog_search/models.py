"""Pydantic models for request/response payloads."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import SearchFailure

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_CITY_ID = 1


def _coerce_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return default


class SortOrder(str, Enum):
    RELEVANCE = "relevance"
    NAME = "name"
    EXTERNAL_ID = "external_id"
    POPULARITY = "popularity"


_SORT_ALIASES = {"externalId": SortOrder.EXTERNAL_ID, "externalid": SortOrder.EXTERNAL_ID}


class SearchSource(str, Enum):
    PRIMARY = "primary"
    RELATIONAL = "relational"


class SearchRequest(BaseModel):
    """The six recognised search parameters, clamped into range.

    Out-of-range or malformed values are coerced, never rejected.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    query: str = Field("", alias="q", description="Search query string")
    page: int = 1
    page_size: int = Field(DEFAULT_PAGE_SIZE, alias="limit")
    sort: SortOrder = SortOrder.RELEVANCE
    city_id: int = DEFAULT_CITY_ID
    user_id: str | None = None

    @field_validator("query", mode="before")
    @classmethod
    def _trim_query(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("page", mode="before")
    @classmethod
    def _clamp_page(cls, value: Any) -> int:
        return max(1, _coerce_int(value, 1))

    @field_validator("page_size", mode="before")
    @classmethod
    def _clamp_page_size(cls, value: Any) -> int:
        return min(MAX_PAGE_SIZE, max(1, _coerce_int(value, DEFAULT_PAGE_SIZE)))

    @field_validator("sort", mode="before")
    @classmethod
    def _coerce_sort(cls, value: Any) -> SortOrder:
        if isinstance(value, SortOrder):
            return value
        if value is None:
            return SortOrder.RELEVANCE
        raw = str(value).strip()
        if raw in _SORT_ALIASES:
            return _SORT_ALIASES[raw]
        try:
            return SortOrder(raw.lower())
        except ValueError:
            return SortOrder.RELEVANCE

    @field_validator("city_id", mode="before")
    @classmethod
    def _coerce_city(cls, value: Any) -> int:
        return _coerce_int(value, DEFAULT_CITY_ID)

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce_user(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        return str(value)

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "SearchRequest":
        """Build a request from loose key/value input, ignoring unknown keys."""
        known = ("q", "page", "limit", "city_id", "sort", "user_id")
        return cls(**{key: params[key] for key in known if key in params})

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class ProductSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: int | None = None
    external_id: str | None = None
    sku: str | None = None
    name: str | None = None
    description: str | None = None
    brand_id: int | None = None
    brand_name: str | None = None
    series_id: int | None = None
    series_name: str | None = None
    unit: str | None = None
    min_sale: int | None = None
    weight: float | None = None
    dimensions: str | None = None
    score: float | None = None
    highlight: Dict[str, List[str]] | None = None


class Diagnostics(BaseModel):
    """Trace record attached to every result; never drives control flow."""

    request_id: str
    route: str = "pending"
    primary_available: bool | None = None
    primary_attempted: bool = False
    cache_hit: bool = False
    primary_error: str | None = None
    fallback_error: str | None = None
    search_variants: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0


class SearchResult(BaseModel):
    items: List[ProductSummary] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    source: SearchSource | None = None
    used_fallback: bool = False
    search_variants: List[str] = Field(default_factory=list)
    diagnostics: Diagnostics | None = None
    error: str | None = None
    error_code: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


@dataclass
class SearchOutcome:
    """Either a result or the reason a search path failed."""

    result: SearchResult | None = None
    failure: SearchFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.result is not None


class SearchResponseData(BaseModel):
    products: List[ProductSummary]
    total: int
    page: int
    limit: int
    source: SearchSource | None = None
    used_fallback: bool = False
    diagnostics: Diagnostics | None = None


class SearchResponse(BaseModel):
    success: bool
    data: SearchResponseData
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchResponse":
        data = SearchResponseData(
            products=result.items,
            total=result.total,
            page=result.page,
            limit=result.page_size,
            source=result.source,
            used_fallback=result.used_fallback,
            diagnostics=result.diagnostics,
        )
        return cls(success=result.ok, data=data, error=result.error, error_code=result.error_code)
