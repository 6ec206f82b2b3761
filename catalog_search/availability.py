"""Cached health check of the primary search engine.

One :class:`AvailabilityProbe` is built per process by the composition root
and shared by every request. The answer is cached for 60s after a success and
10s after a failure, so a healthy engine is not pinged on every search while
an outage is rechecked quickly. After five consecutive failures the check time
is backdated by 50s.

Probe failures never escape: they only flip the cached boolean.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple

from elasticsearch import Elasticsearch

logger = logging.getLogger(__name__)

HEALTHY_STATUSES = frozenset({"green", "yellow"})


@dataclass(frozen=True)
class AvailabilityState:
    available: Optional[bool] = None
    last_checked_at: float = 0.0
    consecutive_failures: int = 0
    cluster_status: Optional[str] = None


class AvailabilityProbe:
    def __init__(
        self,
        client: Elasticsearch,
        *,
        success_ttl: float = 60.0,
        failure_ttl: float = 10.0,
        failure_threshold: int = 5,
        backoff_offset: float = 50.0,
        health_timeout: str = "2s",
        request_timeout: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._success_ttl = success_ttl
        self._failure_ttl = failure_ttl
        self._failure_threshold = failure_threshold
        self._backoff_offset = backoff_offset
        self._health_timeout = health_timeout
        self._request_timeout = request_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = AvailabilityState()

    def state(self) -> AvailabilityState:
        with self._lock:
            return self._state

    def is_available(self) -> bool:
        now = self._clock()
        with self._lock:
            state = self._state
            if state.available is not None:
                ttl = self._success_ttl if state.available else self._failure_ttl
                if now - state.last_checked_at < ttl:
                    return state.available

        # Network check happens outside the lock; concurrent callers may both
        # probe, which only costs an extra ping.
        started = self._clock()
        available, status, error = self._check()
        checked_at = self._clock()

        with self._lock:
            if available:
                self._state = AvailabilityState(True, checked_at, 0, status)
                logger.debug(
                    "Engine available ping_time_ms=%.2f cluster_status=%s",
                    (checked_at - started) * 1000,
                    status,
                )
                return True

            failures = self._state.consecutive_failures + 1
            last_checked = checked_at
            if failures >= self._failure_threshold:
                last_checked = checked_at - self._backoff_offset
            self._state = replace(
                self._state,
                available=False,
                last_checked_at=last_checked,
                consecutive_failures=failures,
                cluster_status=status,
            )
        logger.warning(
            "Engine unavailable status=%s error=%s consecutive_failures=%s",
            status,
            error,
            failures,
        )
        return False

    def _check(self) -> Tuple[bool, Optional[str], Optional[str]]:
        try:
            client = self._client.options(request_timeout=self._request_timeout)
            if not client.ping():
                return False, None, "ping failed"
            health = client.cluster.health(timeout=self._health_timeout)
            status = health.get("status") or "red"
        except Exception as exc:  # probe failures stay local
            return False, None, str(exc)
        if status not in HEALTHY_STATUSES:
            return False, status, "cluster not healthy"
        return True, status, None
