"""Elasticsearch client factory.

The rest of the code works against the official synchronous client. Blocking
calls are wrapped via ``asyncio.to_thread`` by the caller where necessary.
The client is created once by the composition root and handed to every
component that needs it.
"""
from __future__ import annotations

import logging

from elasticsearch import Elasticsearch

from .config import Settings

logger = logging.getLogger(__name__)


def create_client(settings: Settings) -> Elasticsearch:
    logger.info("Connecting to Elasticsearch at %s", settings.es_host)
    return Elasticsearch(
        settings.es_host,
        request_timeout=settings.es_request_timeout,
        max_retries=1,
        retry_on_timeout=False,
    )
