"""
backend/matchboard/services/match_repository.py

Purpose:
    Read access to the authoritative ``matches`` collection plus the one write
    the feed is allowed to make: the idempotent self-healing transition of a
    stale match to finished.

Dependencies:
    - matchboard.database
    - matchboard.config
    - matchboard.utils
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import matchboard.database as _db
from matchboard.config import settings
from matchboard.models.match import LiveStatus
from matchboard.utils import utcnow

_TERMINAL = [int(LiveStatus.finished), int(LiveStatus.cancelled)]

_FEED_PROJECTION = {
    "_id": 0,
    "event_id": 1,
    "sport_id": 1,
    "league_id": 1,
    "league_name": 1,
    "home_team": 1,
    "away_team": 1,
    "home_team_id": 1,
    "away_team_id": 1,
    "start_time": 1,
    "live_status": 1,
    "home_score": 1,
    "away_score": 1,
    "has_open_markets": 1,
    "last_updated": 1,
    "betting_availability": 1,
    "event_type": 1,
    "match_duration": 1,
    "api_football_fixture_id": 1,
}


class MatchRepository:
    async def find_feed_candidates(
        self,
        sport_id: int,
        league_ids: list[int] | None = None,
        *,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Non-terminal matches that could appear in any listing.

        Only coarse predicates run in Mongo; the visibility rules are applied
        by the caller. Explicitly live matches are always returned so that
        expired ones reach the classifier and get healed.
        """
        now = now or utcnow()
        limit = int(limit or settings.FEED_STORE_QUERY_LIMIT)
        query: dict[str, Any] = {
            "sport_id": int(sport_id),
            "live_status": {"$nin": _TERMINAL},
            "start_time": {"$lte": now + timedelta(days=settings.PREMATCH_HORIZON_DAYS)},
            "$or": [
                {"start_time": {"$gte": now - timedelta(hours=settings.FEED_STORE_LOOKBACK_HOURS)}},
                {"live_status": int(LiveStatus.live)},
            ],
        }
        if league_ids:
            query["league_id"] = {"$in": [int(x) for x in league_ids]}
        cursor = _db.db.matches.find(query, _FEED_PROJECTION).sort("start_time", 1).limit(limit)
        return await cursor.to_list(length=limit)

    async def get_match(self, event_id: str) -> dict[str, Any] | None:
        return await _db.db.matches.find_one({"event_id": str(event_id)}, _FEED_PROJECTION)

    async def list_league_ids(self, sport_id: int) -> list[int]:
        values = await _db.db.matches.distinct("league_id", {"sport_id": int(sport_id)})
        return sorted(int(v) for v in values if v is not None)

    async def find_for_odds_sync(self, sport_id: int, *, limit: int) -> list[dict[str, Any]]:
        now = utcnow()
        cursor = _db.db.matches.find(
            {
                "sport_id": int(sport_id),
                "live_status": {"$nin": _TERMINAL},
                "start_time": {
                    "$gte": now - timedelta(hours=settings.MATCH_DEFAULT_MAX_DURATION_HOURS),
                    "$lte": now + timedelta(days=settings.PREMATCH_HORIZON_DAYS),
                },
            },
            _FEED_PROJECTION,
        ).sort("start_time", 1).limit(int(limit))
        return await cursor.to_list(length=int(limit))

    async def mark_finished(self, event_id: str, *, reason: str) -> bool:
        """Transition a match to finished unless it already is terminal.

        Safe to call concurrently and repeatedly: the guard makes every call
        after the first a no-op. Returns True when this call changed the record.
        """
        now = utcnow()
        result = await _db.db.matches.update_one(
            {"event_id": str(event_id), "live_status": {"$nin": _TERMINAL}},
            {
                "$set": {
                    "live_status": int(LiveStatus.finished),
                    "finished_reason": reason,
                    "finished_at": now,
                    "last_updated": now,
                }
            },
        )
        return bool(result.modified_count)

    async def freshness_counts(self, stale_before: datetime) -> tuple[int, int]:
        """Return ``(stale, total)`` where stale means last_updated before the cutoff or missing."""
        total = await _db.db.matches.count_documents({})
        if not total:
            return 0, 0
        stale = await _db.db.matches.count_documents(
            {"$or": [{"last_updated": {"$lt": stale_before}}, {"last_updated": None}]}
        )
        return int(stale), int(total)


match_repository = MatchRepository()
