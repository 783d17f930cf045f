"""
backend/matchboard/services/health_monitor.py

Purpose:
    Sample side signals (cache reachability, recent refresh job failures, match
    data staleness) and annotate feed responses with a degradation status.
    Every check is isolated and time-bounded; a broken check degrades the
    status, it never fails the request.

Dependencies:
    - matchboard.database
    - matchboard.services.feed_cache_service
    - matchboard.services.match_repository
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import matchboard.database as _db
from matchboard.config import settings
from matchboard.services import feed_cache_service
from matchboard.services.match_repository import MatchRepository
from matchboard.utils import utcnow

logger = logging.getLogger("matchboard.health_monitor")

DEGRADED_MESSAGE = "Service temporarily experiencing issues - showing available data"
WARNING_CACHE = "Cache service unavailable"
WARNING_QUEUE = "High job failure rate detected"
WARNING_STALE = "Most match data is stale"
WARNING_CHECK_FAILED = "Health check failed"


@dataclass
class HealthStatus:
    healthy: bool = True
    warnings: list[str] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)
    checks: dict[str, Any] = field(default_factory=dict)

    def degrade(self, component: str, warning: str) -> None:
        if component not in self.degraded:
            self.degraded.append(component)
        if warning not in self.warnings:
            self.warnings.append(warning)
        self.healthy = False

    @property
    def system_status(self) -> str:
        return "healthy" if self.healthy else "degraded"


class HealthMonitor:
    def __init__(self, repository: MatchRepository | None = None):
        self.repo = repository or MatchRepository()

    async def _run(self, coro) -> Any:
        return await asyncio.wait_for(coro, timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS)

    async def _check_cache(self, status: HealthStatus) -> None:
        try:
            await self._run(feed_cache_service.ping())
            status.checks["cache"] = "ok"
        except Exception as exc:
            status.checks["cache"] = "unavailable"
            status.degrade("cache", WARNING_CACHE)
            logger.warning("System health: cache unavailable: %s", exc)

    async def _check_queue(self, status: HealthStatus) -> None:
        since = utcnow() - timedelta(minutes=settings.HEALTH_FAILED_JOBS_WINDOW_MINUTES)
        try:
            failures = await self._run(
                _db.db.failed_jobs.count_documents({"failed_at": {"$gt": since}}),
            )
        except Exception as exc:
            status.checks["failed_jobs"] = None
            status.degrade("queue_processing", WARNING_CHECK_FAILED)
            logger.error("System health: failed job count unavailable: %s", exc)
            return
        status.checks["failed_jobs"] = int(failures)
        if failures > settings.HEALTH_FAILED_JOBS_MAX:
            status.degrade("queue_processing", WARNING_QUEUE)
            logger.warning("System health: high job failure rate failures=%d", failures)

    async def _check_freshness(self, status: HealthStatus) -> None:
        stale_before = utcnow() - timedelta(hours=settings.HEALTH_STALE_AFTER_HOURS)
        try:
            stale, total = await self._run(self.repo.freshness_counts(stale_before))
        except Exception as exc:
            status.checks["stale_ratio"] = None
            status.degrade("data_freshness", WARNING_CHECK_FAILED)
            logger.error("System health: staleness ratio unavailable: %s", exc)
            return
        ratio = (stale / total) if total else 0.0
        status.checks["stale_ratio"] = round(ratio, 4)
        if total and ratio > settings.HEALTH_STALE_RATIO_MAX:
            status.degrade("data_freshness", WARNING_STALE)
            logger.warning("System health: most data is stale stale=%d total=%d", stale, total)

    async def check_health(self) -> HealthStatus:
        status = HealthStatus()
        await asyncio.gather(
            self._check_cache(status),
            self._check_queue(status),
            self._check_freshness(status),
        )
        return status

    @staticmethod
    def annotate(response: dict[str, Any], status: HealthStatus) -> dict[str, Any]:
        response["system_status"] = status.system_status
        if not status.healthy:
            response["warnings"] = list(status.warnings)
            if not response.get("data"):
                response["message"] = DEGRADED_MESSAGE
        return response


health_monitor = HealthMonitor()
