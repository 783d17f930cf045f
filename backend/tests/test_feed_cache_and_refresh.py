"""
backend/tests/test_feed_cache_and_refresh.py

Purpose:
    Shared cache entries, the atomic cooldown claim and refresh job coalescing.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from matchboard.services import feed_cache_service
from matchboard.services.refresh_dispatcher import RefreshDispatcher, enqueue_refresh_job, tasks_for
from matchboard.utils import utcnow


def test_cache_keys():
    assert feed_cache_service.build_matches_cache_key(kind="live", sport_id=1, league_id=39) == "live_matches:1:39"
    assert (
        feed_cache_service.build_matches_cache_key(kind="prematch", sport_id=1, league_id=39, stale=True)
        == "prematch_matches_stale:1:39"
    )
    assert feed_cache_service.build_odds_cache_key("evt-1") == "odds:evt-1"
    assert feed_cache_service.build_cooldown_key(sport_id=1, match_type="all") == "refresh_cooldown:1:all"


@pytest.mark.asyncio
async def test_set_and_get_payload(fake_db):
    await feed_cache_service.set_cached_payload(cache_key="odds:m1", payload={"odds_count": 2}, ttl_seconds=60, kind="odds")
    assert await feed_cache_service.get_cached_payload("odds:m1") == {"odds_count": 2}
    assert await feed_cache_service.get_cached_payload("odds:missing") is None

    fake_db.feed_cache.docs[0]["expires_at"] = utcnow() - timedelta(seconds=1)
    assert await feed_cache_service.get_cached_payload("odds:m1") is None


@pytest.mark.asyncio
async def test_prefix_lookup_is_anchored(fake_db):
    for key in ("live_matches:1:10", "live_matches:1:20", "live_matches_stale:1:10", "live_matches:11:10"):
        await feed_cache_service.set_cached_payload(cache_key=key, payload=[key], ttl_seconds=60, kind="live_matches")
    found = await feed_cache_service.get_cached_payloads_by_prefix("live_matches:1:")
    assert sorted(found) == ["live_matches:1:10", "live_matches:1:20"]


@pytest.mark.asyncio
async def test_cooldown_claim_has_one_winner(fake_db):
    results = await asyncio.gather(
        *(feed_cache_service.claim_cooldown("refresh_cooldown:1:all", ttl_seconds=300) for _ in range(20))
    )
    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_expired_cooldown_can_be_reclaimed_and_released(fake_db):
    key = "refresh_cooldown:1:live"
    assert await feed_cache_service.claim_cooldown(key, ttl_seconds=300) is True
    assert await feed_cache_service.claim_cooldown(key, ttl_seconds=300) is False
    fake_db.feed_cache.docs[0]["expires_at"] = utcnow() - timedelta(seconds=1)
    assert await feed_cache_service.claim_cooldown(key, ttl_seconds=300) is True
    await feed_cache_service.release_cooldown(key)
    assert await feed_cache_service.claim_cooldown(key, ttl_seconds=300) is True


def test_tasks_for_match_types():
    assert tasks_for("live") == ["live-sync", "odds-sync"]
    assert tasks_for("prematch") == ["prematch-sync", "odds-sync"]
    assert tasks_for("all") == ["live-sync", "prematch-sync", "odds-sync"]
    assert tasks_for("available_for_betting") == ["live-sync", "odds-sync"]


@pytest.mark.asyncio
async def test_queued_jobs_coalesce_per_lane(fake_db):
    await enqueue_refresh_job("live-sync", sport_id=1, league_ids=[10], match_type="live", reason="empty")
    await enqueue_refresh_job("live-sync", sport_id=1, league_ids=[20, 10], match_type="live", reason="stale_store")
    assert len(fake_db.refresh_jobs.docs) == 1
    job = fake_db.refresh_jobs.docs[0]
    assert job["league_ids"] == [10, 20]
    assert job["requests"] == 2
    assert job["reason"] == "stale_store"


@pytest.mark.asyncio
async def test_burst_of_dispatches_enqueues_once(fake_db):
    dispatcher = RefreshDispatcher()
    for _ in range(50):
        dispatcher.dispatch(1, [10], "prematch", reason="cache_fallback")
    await dispatcher.wait_idle()
    assert sorted(doc["task"] for doc in fake_db.refresh_jobs.docs) == ["odds-sync", "prematch-sync"]
    assert all(doc["requests"] == 1 for doc in fake_db.refresh_jobs.docs)


@pytest.mark.asyncio
async def test_manual_refresh_bypasses_cooldown(fake_db):
    dispatcher = RefreshDispatcher()
    assert await dispatcher.request_refresh(1, [], "live", reason="auto") == ["live-sync", "odds-sync"]
    assert await dispatcher.request_refresh(1, [], "live", reason="auto") == []
    assert await dispatcher.request_refresh(1, [], "live", reason="manual", bypass_cooldown=True) == [
        "live-sync",
        "odds-sync",
    ]


@pytest.mark.asyncio
async def test_failed_enqueue_releases_cooldown(fake_db):
    dispatcher = RefreshDispatcher()
    fake_db.refresh_jobs.fail_with = RuntimeError("queue down")
    with pytest.raises(RuntimeError):
        await dispatcher.request_refresh(1, [], "live", reason="auto")
    assert fake_db.feed_cache.docs == []
