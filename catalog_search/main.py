"""FastAPI application wiring the search service."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from elasticsearch import ApiError, TransportError
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from .bootstrap import SearchServices, build_search_services, setup_logging
from .config import settings
from .indexing import alias_targets
from .models import SearchRequest, SearchResponse

logger = logging.getLogger(__name__)


def create_app(services: Optional[SearchServices] = None) -> FastAPI:
    """Build the app; pass ``services`` to skip building real clients on startup."""

    app = FastAPI(title="Catalog Search Service")
    app.state.services = services

    @app.on_event("startup")
    async def startup_event() -> None:
        if app.state.services is None:
            setup_logging(settings.log_level)
            app.state.services = build_search_services(settings)
            logger.info("Search services ready alias=%s", settings.es_alias)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if services is None and app.state.services is not None:
            app.state.services.close()

    @app.get("/health")
    async def health(request: Request) -> dict:
        current: SearchServices = request.app.state.services
        available = await asyncio.to_thread(current.probe.is_available)
        state = current.probe.state()
        try:
            targets = await asyncio.to_thread(alias_targets, current.es, settings.es_alias)
        except (ApiError, TransportError) as exc:
            logger.warning("Alias lookup failed: %s", exc)
            targets = []
        return {
            "engine_available": available,
            "cluster_status": state.cluster_status,
            "consecutive_failures": state.consecutive_failures,
            "alias": settings.es_alias,
            "indices": targets,
        }

    @app.get("/search", response_model=SearchResponse)
    async def search(
        request: Request,
        q: Optional[str] = Query(None, description="Search query"),
        page: Optional[str] = Query(None, description="Page number, clamped to >= 1"),
        limit: Optional[str] = Query(None, description="Page size, clamped to 1..100"),
        city_id: Optional[str] = Query(None),
        sort: Optional[str] = Query(None, description="relevance | name | external_id | popularity"),
        user_id: Optional[str] = Query(None),
    ):
        params = {
            "q": q,
            "page": page,
            "limit": limit,
            "city_id": city_id,
            "sort": sort,
            "user_id": user_id,
        }
        search_request = SearchRequest.from_params({key: value for key, value in params.items() if value is not None})
        current: SearchServices = request.app.state.services
        result = await current.orchestrator.search(search_request)
        response = SearchResponse.from_result(result)
        if not response.success:
            return JSONResponse(status_code=503, content=response.model_dump(mode="json"))
        return response

    return app


app = create_app()
