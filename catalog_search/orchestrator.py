"""Public search entry point: engine first, relational store as fallback.

Routing rules:

* empty query -> relational listing, no engine involved;
* engine reported healthy -> engine under a time bound; any failure or
  timeout falls through to the relational store, the engine is not retried;
* engine reported down -> relational store directly;
* relational store failing too -> an explicit ``SERVICE_UNAVAILABLE`` result.

:meth:`SearchOrchestrator.search` never raises.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from time import perf_counter
from typing import Any, Mapping, Optional, Protocol

from pydantic import ValidationError

from .availability import AvailabilityProbe
from .cache import CacheBackend, cache_key
from .errors import SERVICE_UNAVAILABLE, ErrorKind, SearchFailure
from .models import Diagnostics, SearchOutcome, SearchRequest, SearchResult

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Search service temporarily unavailable"

ROUTE_LISTING = "relational_listing"
ROUTE_PRIMARY = "primary"
ROUTE_FALLBACK = "relational_fallback"
ROUTE_ENGINE_DOWN = "relational_primary"
ROUTE_UNAVAILABLE = "unavailable"


class SearchPath(Protocol):
    def search(self, request: SearchRequest) -> SearchOutcome: ...


class SearchOrchestrator:
    def __init__(
        self,
        primary: SearchPath,
        fallback: SearchPath,
        probe: AvailabilityProbe,
        *,
        timeout_seconds: float = 5.0,
        cache: Optional[CacheBackend] = None,
        cache_ttl_seconds: int = 30,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._probe = probe
        self._timeout = timeout_seconds
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds

    async def search(self, request: SearchRequest | Mapping[str, Any]) -> SearchResult:
        started = perf_counter()
        diagnostics = Diagnostics(request_id=f"search_{uuid.uuid4().hex}")
        normalized = SearchRequest()
        try:
            normalized = request if isinstance(request, SearchRequest) else SearchRequest.from_params(request)
            logger.info(
                "[%s] Search started q=%r page=%s limit=%s sort=%s",
                diagnostics.request_id,
                normalized.query,
                normalized.page,
                normalized.page_size,
                normalized.sort.value,
            )
            result = await self._route(normalized, diagnostics)
        except Exception as exc:
            logger.exception("[%s] Search failed unexpectedly", diagnostics.request_id)
            diagnostics.fallback_error = diagnostics.fallback_error or str(exc)
            diagnostics.route = ROUTE_UNAVAILABLE
            result = self._unavailable(normalized)

        diagnostics.duration_ms = round((perf_counter() - started) * 1000, 2)
        logger.info(
            "[%s] Search finished route=%s total=%s took=%.2fms",
            diagnostics.request_id,
            diagnostics.route,
            result.total,
            diagnostics.duration_ms,
        )
        return result.model_copy(update={"diagnostics": diagnostics})

    async def _route(self, request: SearchRequest, diagnostics: Diagnostics) -> SearchResult:
        if not request.query:
            diagnostics.route = ROUTE_LISTING
            outcome = await self._call_fallback(request)
            return self._finish_relational(outcome, request, diagnostics, used_fallback=False)

        available = await asyncio.to_thread(self._probe.is_available)
        diagnostics.primary_available = available
        if not available:
            logger.warning("[%s] Engine unavailable, using relational store", diagnostics.request_id)
            diagnostics.route = ROUTE_ENGINE_DOWN
            outcome = await self._call_fallback(request)
            return self._finish_relational(outcome, request, diagnostics, used_fallback=False)

        cached = await self._cached(request)
        if cached is not None:
            diagnostics.route = ROUTE_PRIMARY
            diagnostics.cache_hit = True
            return cached

        diagnostics.primary_attempted = True
        outcome = await self._call_primary(request)
        if outcome.ok:
            diagnostics.route = ROUTE_PRIMARY
            await self._store(request, outcome.result)
            return outcome.result

        failure = outcome.failure
        logger.warning(
            "[%s] Engine search failed, falling back to relational store: %s",
            diagnostics.request_id,
            failure.describe(),
        )
        diagnostics.primary_error = failure.describe()
        diagnostics.route = ROUTE_FALLBACK
        outcome = await self._call_fallback(request)
        return self._finish_relational(outcome, request, diagnostics, used_fallback=True)

    async def _call_primary(self, request: SearchRequest) -> SearchOutcome:
        # On timeout the worker thread is abandoned, not cancelled server-side.
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._primary.search, request), timeout=self._timeout)
        except asyncio.TimeoutError:
            return SearchOutcome(
                failure=SearchFailure(ErrorKind.TIMEOUT, f"no engine response within {self._timeout}s")
            )
        except Exception as exc:  # any engine-side surprise still gets the fallback
            logger.exception("Engine adapter raised")
            return SearchOutcome(failure=SearchFailure(ErrorKind.TRANSPORT, str(exc)))

    async def _call_fallback(self, request: SearchRequest) -> SearchOutcome:
        try:
            return await asyncio.to_thread(self._fallback.search, request)
        except Exception as exc:
            logger.exception("Relational search raised")
            return SearchOutcome(failure=SearchFailure(ErrorKind.STORE, str(exc)))

    def _finish_relational(
        self,
        outcome: SearchOutcome,
        request: SearchRequest,
        diagnostics: Diagnostics,
        *,
        used_fallback: bool,
    ) -> SearchResult:
        if not outcome.ok:
            reason = outcome.failure.describe() if outcome.failure else "no result"
            logger.error("[%s] Relational search failed as well: %s", diagnostics.request_id, reason)
            diagnostics.fallback_error = reason
            diagnostics.route = ROUTE_UNAVAILABLE
            return self._unavailable(request)
        diagnostics.search_variants = list(outcome.result.search_variants)
        return outcome.result.model_copy(update={"used_fallback": used_fallback})

    @staticmethod
    def _unavailable(request: SearchRequest) -> SearchResult:
        return SearchResult(
            items=[],
            total=0,
            page=request.page,
            page_size=request.page_size,
            error=UNAVAILABLE_MESSAGE,
            error_code=SERVICE_UNAVAILABLE,
        )

    async def _cached(self, request: SearchRequest) -> Optional[SearchResult]:
        if self._cache is None:
            return None
        payload = await asyncio.to_thread(self._cache.get, cache_key(request))
        if payload is None:
            return None
        try:
            return SearchResult.model_validate(payload)
        except ValidationError:
            return None

    async def _store(self, request: SearchRequest, result: SearchResult) -> None:
        if self._cache is None:
            return
        payload = result.model_dump(mode="json", exclude={"diagnostics"})
        await asyncio.to_thread(self._cache.set, cache_key(request), payload, self._cache_ttl)
