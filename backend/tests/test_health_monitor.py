"""
backend/tests/test_health_monitor.py

Purpose:
    Health checks are isolated, bounded and only ever annotate responses.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from matchboard.services import health_monitor as health_module
from matchboard.services.health_monitor import (
    DEGRADED_MESSAGE,
    WARNING_CHECK_FAILED,
    WARNING_QUEUE,
    WARNING_STALE,
    HealthMonitor,
    HealthStatus,
)
from matchboard.utils import utcnow


@pytest.mark.asyncio
async def test_healthy_when_all_checks_pass(fake_db):
    fake_db.matches.docs = [{"event_id": "m1", "last_updated": utcnow()}]
    status = await HealthMonitor().check_health()
    assert status.healthy is True
    assert status.warnings == []
    assert status.checks == {"cache": "ok", "failed_jobs": 0, "stale_ratio": 0.0}


@pytest.mark.asyncio
async def test_failed_jobs_over_threshold_degrade_queue(fake_db):
    now = utcnow()
    fake_db.failed_jobs.docs = [{"task": "live-sync", "failed_at": now - timedelta(minutes=5)} for _ in range(6)]
    fake_db.failed_jobs.docs.append({"task": "live-sync", "failed_at": now - timedelta(hours=3)})
    status = await HealthMonitor().check_health()
    assert status.degraded == ["queue_processing"]
    assert status.warnings == [WARNING_QUEUE]
    assert status.checks["failed_jobs"] == 6


@pytest.mark.asyncio
async def test_mostly_stale_data_degrades_freshness(fake_db):
    old = utcnow() - timedelta(hours=7)
    fake_db.matches.docs = [{"event_id": f"m{i}", "last_updated": old} for i in range(9)]
    fake_db.matches.docs.append({"event_id": "fresh", "last_updated": utcnow()})
    status = await HealthMonitor().check_health()
    assert status.degraded == ["data_freshness"]
    assert status.warnings == [WARNING_STALE]
    assert status.checks["stale_ratio"] == 0.9


@pytest.mark.asyncio
async def test_broken_check_degrades_without_raising(fake_db):
    fake_db.failed_jobs.fail_with = ServerSelectionTimeoutError("down")
    fake_db.ping_error = ServerSelectionTimeoutError("down")
    status = await HealthMonitor().check_health()
    assert status.healthy is False
    assert set(status.degraded) == {"cache", "queue_processing"}
    assert WARNING_CHECK_FAILED in status.warnings


@pytest.mark.asyncio
async def test_slow_check_is_bounded(fake_db, monkeypatch):
    monkeypatch.setattr(health_module.settings, "HEALTH_CHECK_TIMEOUT_SECONDS", 0.01)

    class _SlowRepo:
        async def freshness_counts(self, _stale_before):
            await asyncio.sleep(1)
            return 0, 0

    status = await HealthMonitor(repository=_SlowRepo()).check_health()
    assert status.degraded == ["data_freshness"]


def test_annotate():
    healthy = HealthStatus()
    payload = HealthMonitor.annotate({"data": [], "warnings": [], "message": None}, healthy)
    assert payload["system_status"] == "healthy"
    assert payload["message"] is None

    degraded = HealthStatus()
    degraded.degrade("cache", "Cache service unavailable")
    empty = HealthMonitor.annotate({"data": [], "warnings": [], "message": None}, degraded)
    assert empty["system_status"] == "degraded"
    assert empty["warnings"] == ["Cache service unavailable"]
    assert empty["message"] == DEGRADED_MESSAGE

    with_data = HealthMonitor.annotate({"data": [{"id": "m1"}], "warnings": [], "message": "kept"}, degraded)
    assert with_data["message"] == "kept"
