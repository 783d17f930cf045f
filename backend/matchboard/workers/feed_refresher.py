"""
backend/matchboard/workers/feed_refresher.py

Purpose:
    Scheduled consumer of queued refresh jobs. Live and prematch jobs rebuild
    the per-league fast and stale match list caches from the store; odds jobs
    re-aggregate provider odds into the per-match odds cache. Failed jobs are
    recorded for the health monitor.

Dependencies:
    - matchboard.database
    - matchboard.services.feed_cache_service
    - matchboard.services.match_repository
    - matchboard.services.odds_aggregation_service
"""

from __future__ import annotations

import logging
from typing import Any

from pymongo import ReturnDocument

import matchboard.database as _db
from matchboard.config import settings
from matchboard.models.match import MatchType
from matchboard.monitoring.feed_metrics import METRIC_REFRESH_JOB_FAILURES
from matchboard.services import feed_cache_service
from matchboard.services.match_repository import match_repository
from matchboard.services.match_visibility import match_id, select_for_listing
from matchboard.services.odds_aggregation_service import odds_service
from matchboard.services.refresh_dispatcher import LIVE_SYNC, ODDS_SYNC, PREMATCH_SYNC
from matchboard.utils import utcnow

logger = logging.getLogger("matchboard.feed_refresher")

_LIST_KINDS = {
    LIVE_SYNC: MatchType.live.value,
    PREMATCH_SYNC: MatchType.prematch.value,
}


async def claim_next_job() -> dict[str, Any] | None:
    """Move the oldest queued job to running. Concurrent workers never claim the same job."""
    return await _db.db.refresh_jobs.find_one_and_update(
        {"status": "queued"},
        {"$set": {"status": "running", "started_at": utcnow()}, "$inc": {"attempts": 1}},
        sort=[("created_at", 1)],
        return_document=ReturnDocument.AFTER,
    )


async def _league_ids_for(job: dict[str, Any]) -> list[int]:
    if job.get("all_leagues") or not job.get("league_ids"):
        return await match_repository.list_league_ids(int(job["sport_id"]))
    return sorted({int(x) for x in job["league_ids"]})


async def refresh_match_lists(job: dict[str, Any]) -> int:
    kind = _LIST_KINDS[job["task"]]
    sport_id = int(job["sport_id"])
    now = utcnow()
    written = 0
    for league_id in await _league_ids_for(job):
        rows = await match_repository.find_feed_candidates(sport_id, [league_id], now=now)
        listing = select_for_listing(rows, kind, now)
        for stale, ttl in (
            (False, settings.FEED_FAST_CACHE_TTL_SECONDS),
            (True, settings.FEED_STALE_CACHE_TTL_SECONDS),
        ):
            await feed_cache_service.set_cached_payload(
                cache_key=feed_cache_service.build_matches_cache_key(
                    kind=kind, sport_id=sport_id, league_id=league_id, stale=stale,
                ),
                payload=listing.matches,
                ttl_seconds=ttl,
                kind=f"{kind}_matches",
            )
        written += len(listing.matches)
    return written


async def refresh_odds(job: dict[str, Any]) -> int:
    sport_id = int(job["sport_id"])
    matches = await match_repository.find_for_odds_sync(sport_id, limit=settings.ODDS_SYNC_MATCH_LIMIT)
    league_ids = {int(x) for x in job.get("league_ids") or []}
    written = 0
    for match in matches:
        if league_ids and not job.get("all_leagues") and int(match.get("league_id") or 0) not in league_ids:
            continue
        records = await odds_service.aggregate_for_cache(match)
        await feed_cache_service.set_cached_payload(
            cache_key=feed_cache_service.build_odds_cache_key(match_id(match)),
            payload={"odds_count": len(records), "odds": [r.model_dump() for r in records]},
            ttl_seconds=settings.ODDS_CACHE_TTL_SECONDS,
            kind="odds",
        )
        written += 1
    return written


_RUNNERS = {
    LIVE_SYNC: refresh_match_lists,
    PREMATCH_SYNC: refresh_match_lists,
    ODDS_SYNC: refresh_odds,
}


async def _record_failure(job: dict[str, Any], exc: Exception) -> None:
    now = utcnow()
    METRIC_REFRESH_JOB_FAILURES.labels(task=str(job.get("task"))).inc()
    await _db.db.refresh_jobs.update_one(
        {"_id": job["_id"]},
        {"$set": {"status": "failed", "finished_at": now, "error": str(exc)}},
    )
    await _db.db.failed_jobs.insert_one(
        {
            "job_id": job["_id"],
            "task": job.get("task"),
            "sport_id": job.get("sport_id"),
            "match_type": job.get("match_type"),
            "error": str(exc),
            "failed_at": now,
        }
    )


async def run_job(job: dict[str, Any]) -> bool:
    runner = _RUNNERS.get(job.get("task"))
    try:
        if runner is None:
            raise ValueError(f"unknown refresh task {job.get('task')!r}")
        written = await runner(job)
    except Exception as exc:
        logger.error("Refresh job failed task=%s sport_id=%s: %s", job.get("task"), job.get("sport_id"), exc)
        await _record_failure(job, exc)
        return False
    await _db.db.refresh_jobs.update_one(
        {"_id": job["_id"]},
        {"$set": {"status": "done", "finished_at": utcnow(), "written": written}},
    )
    logger.info(
        "Refresh job done task=%s sport_id=%s match_type=%s written=%d",
        job.get("task"),
        job.get("sport_id"),
        job.get("match_type"),
        written,
    )
    return True


async def process_refresh_jobs(batch_size: int | None = None) -> int:
    """Scheduler entrypoint: drain up to ``batch_size`` queued jobs."""
    processed = 0
    for _ in range(int(batch_size or settings.FEED_REFRESHER_BATCH_SIZE)):
        job = await claim_next_job()
        if job is None:
            break
        await run_job(job)
        processed += 1
    if processed:
        logger.debug("Feed refresher processed %d jobs", processed)
    return processed
