"""
backend/matchboard/services/refresh_dispatcher.py

Purpose:
    Fire-and-forget background refresh requests from the read path. A cooldown
    claim in the shared cache lets at most one request per sport and match type
    enqueue within the window; queued jobs are coalesced per lane.

Dependencies:
    - matchboard.database
    - matchboard.services.feed_cache_service
    - matchboard.monitoring.feed_metrics
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pymongo.errors import DuplicateKeyError

import matchboard.database as _db
from matchboard.config import settings
from matchboard.models.match import MatchType
from matchboard.monitoring.feed_metrics import METRIC_REFRESH_DISPATCHED, METRIC_REFRESH_SUPPRESSED
from matchboard.services.feed_cache_service import build_cooldown_key, claim_cooldown, release_cooldown
from matchboard.utils import utcnow

logger = logging.getLogger("matchboard.refresh_dispatcher")

LIVE_SYNC = "live-sync"
PREMATCH_SYNC = "prematch-sync"
ODDS_SYNC = "odds-sync"
REFRESH_TASKS = (LIVE_SYNC, PREMATCH_SYNC, ODDS_SYNC)


def tasks_for(match_type: str) -> list[str]:
    match_type = MatchType(match_type)
    tasks: list[str] = []
    if match_type in (MatchType.live, MatchType.all, MatchType.available_for_betting):
        tasks.append(LIVE_SYNC)
    if match_type in (MatchType.prematch, MatchType.all):
        tasks.append(PREMATCH_SYNC)
    tasks.append(ODDS_SYNC)
    return tasks


async def enqueue_refresh_job(
    task: str,
    *,
    sport_id: int,
    league_ids: list[int],
    match_type: str,
    reason: str,
) -> None:
    """Queue one job, merging into an already-queued job for the same lane."""
    now = utcnow()
    key = {"task": task, "sport_id": int(sport_id), "match_type": match_type, "status": "queued"}
    update: dict[str, Any] = {
        "$set": {"updated_at": now, "reason": reason},
        "$setOnInsert": {"created_at": now, "attempts": 0},
        "$inc": {"requests": 1},
    }
    if league_ids:
        update["$addToSet"] = {"league_ids": {"$each": [int(x) for x in league_ids]}}
        update["$setOnInsert"]["all_leagues"] = False
    else:
        update["$set"]["all_leagues"] = True
        update["$setOnInsert"]["league_ids"] = []
    try:
        await _db.db.refresh_jobs.update_one(key, update, upsert=True)
    except DuplicateKeyError:
        # Lost an insert race against another process; the job exists now.
        await _db.db.refresh_jobs.update_one(key, update)
    METRIC_REFRESH_DISPATCHED.labels(task=task).inc()


class RefreshDispatcher:
    def __init__(self) -> None:
        self._pending: set[asyncio.Task] = set()

    async def request_refresh(
        self,
        sport_id: int,
        league_ids: list[int] | None,
        match_type: str,
        *,
        reason: str,
        bypass_cooldown: bool = False,
    ) -> list[str]:
        """Claim the cooldown and enqueue the lanes for ``match_type``.

        Returns the enqueued task names, empty when another request holds the
        cooldown.
        """
        match_type = MatchType(match_type).value
        cooldown_key = build_cooldown_key(sport_id=sport_id, match_type=match_type)
        if not bypass_cooldown:
            claimed = await asyncio.wait_for(
                claim_cooldown(cooldown_key, ttl_seconds=settings.FEED_REFRESH_COOLDOWN_SECONDS),
                timeout=settings.FEED_CACHE_TIMEOUT_SECONDS,
            )
            if not claimed:
                METRIC_REFRESH_SUPPRESSED.labels(match_type=match_type).inc()
                logger.debug("Refresh suppressed by cooldown sport_id=%s match_type=%s", sport_id, match_type)
                return []

        tasks = tasks_for(match_type)
        try:
            for task in tasks:
                await enqueue_refresh_job(
                    task,
                    sport_id=sport_id,
                    league_ids=list(league_ids or []),
                    match_type=match_type,
                    reason=reason,
                )
        except Exception:
            if not bypass_cooldown:
                # Let the next request retry instead of waiting out the window.
                await release_cooldown(cooldown_key)
            raise
        logger.info(
            "Refresh enqueued sport_id=%s leagues=%s match_type=%s tasks=%s reason=%s",
            sport_id,
            list(league_ids or []) or "all",
            match_type,
            ",".join(tasks),
            reason,
        )
        return tasks

    def dispatch(self, sport_id: int, league_ids: list[int] | None, match_type: str, *, reason: str) -> None:
        """Schedule a refresh request without waiting for it."""
        task = asyncio.create_task(
            self.request_refresh(sport_id, league_ids, match_type, reason=reason),
            name=f"refresh_dispatch_{sport_id}_{match_type}",
        )
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background refresh dispatch failed: %s", exc, exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait for in-flight dispatches. Used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


refresh_dispatcher = RefreshDispatcher()
