"""
backend/matchboard/services/match_feed_service.py

Purpose:
    Tiered read path for match listings: authoritative store, then fast cache
    with per-league fallback to the stale cache, then an empty response. Each
    tier decides whether a background refresh is requested, and one stale
    rescue runs before the request is failed.

Dependencies:
    - matchboard.services.match_repository
    - matchboard.services.match_visibility
    - matchboard.services.feed_cache_service
    - matchboard.services.refresh_dispatcher
    - matchboard.services.health_monitor
    - matchboard.services.event_bus
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pymongo.errors import PyMongoError

from matchboard.config import settings
from matchboard.errors import InputValidationError, ServiceUnavailable
from matchboard.models.match import MatchFeedItem, MatchScore, MatchType
from matchboard.monitoring.feed_metrics import (
    METRIC_FEED_LATENCY,
    METRIC_FEED_TIER_FAILURES,
    METRIC_FEED_TIER_SERVED,
    METRIC_FINISH_SUGGESTED,
    METRIC_RECORDS_EXCLUDED,
    observe_latency,
)
from matchboard.services import feed_cache_service
from matchboard.services.event_bus import InMemoryEventBus, event_bus
from matchboard.services.event_models import MatchFinishSuggestedEvent
from matchboard.services.health_monitor import HealthMonitor, health_monitor
from matchboard.services.match_repository import MatchRepository
from matchboard.services.match_visibility import (
    ListingResult,
    is_available_for_betting,
    live_status_of,
    match_id,
    select_for_listing,
    start_time_of,
)
from matchboard.services.refresh_dispatcher import RefreshDispatcher, refresh_dispatcher
from matchboard.utils import ensure_utc, parse_utc, utcnow

logger = logging.getLogger("matchboard.match_feed")

SOURCE_DATABASE = "database"
SOURCE_CACHE = "cache_fallback"
SOURCE_NONE = "none"

STATUS_CURRENT = "current"
STATUS_STALE = "stale"
STATUS_EMPTY = "empty"
STATUS_STALE_FALLBACK = "stale_fallback"

MESSAGE_CACHE = "Showing cached data - refreshing in background"
MESSAGE_EMPTY = "Loading match data - please refresh"
MESSAGE_RESCUE = "Showing cached data due to temporary issues"

SCHEDULED_TIME_FORMAT = "%m/%d/%Y, %I:%M %p %Z"

# Accept-Language region -> default timezone
_REGION_TIMEZONES = {
    "US": "America/New_York",
    "GB": "Europe/London",
    "IN": "Asia/Kolkata",
    "CN": "Asia/Shanghai",
    "JP": "Asia/Tokyo",
    "AU": "Australia/Sydney",
    "DE": "Europe/Berlin",
    "FR": "Europe/Paris",
    "IT": "Europe/Rome",
    "ES": "Europe/Madrid",
    "BR": "America/Sao_Paulo",
    "MX": "America/Mexico_City",
    "CA": "America/Toronto",
}


def _is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_timezone(param: str | None, header: str | None = None, accept_language: str | None = None) -> str:
    """Pick the display timezone: explicit parameter, X-Timezone header, Accept-Language region, UTC.

    An invalid explicit parameter is a client error; invalid hints are ignored.
    """
    if param:
        if not _is_valid_timezone(param):
            raise InputValidationError(f"Unknown timezone: {param}")
        return param
    if header and _is_valid_timezone(header.strip()):
        return header.strip()
    if accept_language:
        primary = accept_language.split(",", 1)[0].split(";", 1)[0].strip()
        parts = primary.replace("_", "-").split("-")
        if len(parts) > 1:
            region_tz = _REGION_TIMEZONES.get(parts[-1].upper())
            if region_tz:
                return region_tz
    return "UTC"


def format_scheduled_time(start: datetime | None, tz_name: str) -> str:
    if start is None:
        return "TBD"
    return ensure_utc(start).astimezone(ZoneInfo(tz_name)).strftime(SCHEDULED_TIME_FORMAT)


def betting_availability_of(match: dict[str, Any], *, is_live: bool, now: datetime) -> str:
    if is_live:
        return "live"
    if is_available_for_betting(match, now):
        return MatchType.available_for_betting.value
    return str(match.get("betting_availability") or MatchType.prematch.value)


def _live_duration(match: dict[str, Any], start: datetime | None, now: datetime) -> str | None:
    if match.get("match_duration"):
        return str(match["match_duration"])
    if start is None:
        return None
    return f"{max(0, int((now - start).total_seconds() // 60))}'"


def format_match(
    match: dict[str, Any],
    *,
    is_live: bool,
    tz_name: str,
    now: datetime,
    odds_count: int = 0,
) -> MatchFeedItem:
    start = start_time_of(match)
    home_score = int(match.get("home_score") or 0)
    away_score = int(match.get("away_score") or 0)
    last_updated = match.get("last_updated")
    return MatchFeedItem(
        id=match_id(match),
        sport_id=int(match.get("sport_id") or 0),
        home_team=str(match.get("home_team") or ""),
        away_team=str(match.get("away_team") or ""),
        home_team_id=match.get("home_team_id"),
        away_team_id=match.get("away_team_id"),
        league_id=int(match.get("league_id") or 0),
        league_name=str(match.get("league_name") or ""),
        scheduled_time=format_scheduled_time(start, tz_name),
        start_time=start,
        match_type=MatchType.live.value if is_live else MatchType.prematch.value,
        betting_availability=betting_availability_of(match, is_live=is_live, now=now),
        live_status_id=int(live_status_of(match)),
        has_open_markets=bool(match.get("has_open_markets")),
        score=MatchScore(home=home_score or None, away=away_score or None),
        duration=_live_duration(match, start, now) if is_live else None,
        last_updated=parse_utc(last_updated) if last_updated else None,
        odds_count=odds_count,
    )


@dataclass
class MatchFeedResult:
    matches: list[MatchFeedItem] = field(default_factory=list)
    source: str = SOURCE_NONE
    cache_status: str = STATUS_EMPTY
    max_age: int = 0
    message: str | None = None


def _kinds_for(match_type: str) -> list[str]:
    if match_type == MatchType.live.value:
        return [MatchType.live.value]
    if match_type == MatchType.prematch.value:
        return [MatchType.prematch.value]
    return [MatchType.live.value, MatchType.prematch.value]


def needs_refresh(matches: list[dict[str, Any]], now: datetime) -> bool:
    """True when the oldest ``last_updated`` is missing or older than the staleness window."""
    cutoff = now - timedelta(minutes=settings.FEED_REFRESH_STALE_AFTER_MINUTES)
    for match in matches:
        raw = match.get("last_updated")
        if not raw:
            return True
        try:
            if parse_utc(raw) < cutoff:
                return True
        except (TypeError, ValueError):
            return True
    return False


class ReadCascade:
    def __init__(
        self,
        repository: MatchRepository | None = None,
        dispatcher: RefreshDispatcher | None = None,
        health: HealthMonitor | None = None,
        bus: InMemoryEventBus | None = None,
    ):
        self.repo = repository or MatchRepository()
        self.dispatcher = dispatcher or refresh_dispatcher
        self.health = health or health_monitor
        self.bus = bus or event_bus

    @staticmethod
    def validate_request(sport_id: Any, league_ids: Any, match_type: Any) -> tuple[int, list[int], str]:
        try:
            sport_id = int(sport_id)
        except (TypeError, ValueError):
            raise InputValidationError("sport_id is required") from None
        if sport_id <= 0:
            raise InputValidationError("sport_id must be a positive integer")
        try:
            leagues = sorted({int(x) for x in (league_ids or [])})
        except (TypeError, ValueError):
            raise InputValidationError("league_ids must be integers") from None
        try:
            match_type = MatchType(str(match_type or MatchType.all.value)).value
        except ValueError:
            raise InputValidationError(
                f"match_type must be one of: {', '.join(m.value for m in MatchType)}"
            ) from None
        return sport_id, leagues, match_type

    # ---- Tiers ----

    async def _from_store(self, sport_id: int, league_ids: list[int], now: datetime) -> list[dict[str, Any]] | None:
        try:
            return await asyncio.wait_for(
                self.repo.find_feed_candidates(sport_id, league_ids, now=now),
                timeout=settings.FEED_STORE_TIMEOUT_SECONDS,
            )
        except (asyncio.TimeoutError, PyMongoError) as exc:
            METRIC_FEED_TIER_FAILURES.labels(tier="store").inc()
            logger.warning("Store tier unavailable sport_id=%s: %s", sport_id, exc)
            return None

    async def _cached_lists(
        self,
        kind: str,
        sport_id: int,
        league_ids: list[int],
        *,
        stale: bool,
    ) -> dict[int, list[dict[str, Any]]]:
        if league_ids:
            keys = [
                feed_cache_service.build_matches_cache_key(kind=kind, sport_id=sport_id, league_id=lid, stale=stale)
                for lid in league_ids
            ]
            fetch = feed_cache_service.get_cached_payloads(keys)
        else:
            suffix = "_matches_stale" if stale else "_matches"
            fetch = feed_cache_service.get_cached_payloads_by_prefix(f"{kind}{suffix}:{sport_id}:")
        payloads = await asyncio.wait_for(fetch, timeout=settings.FEED_CACHE_TIMEOUT_SECONDS)
        lists: dict[int, list[dict[str, Any]]] = {}
        for key, payload in payloads.items():
            if not isinstance(payload, list):
                continue
            try:
                lists[int(key.rsplit(":", 1)[1])] = payload
            except (IndexError, ValueError):
                continue
        return lists

    async def _from_cache(
        self,
        sport_id: int,
        league_ids: list[int],
        match_type: str,
        *,
        stale_only: bool = False,
    ) -> list[dict[str, Any]]:
        """Fast entries per league, falling back to the stale entry for leagues without one.

        A cache outage or timeout reads as no entries.
        """
        try:
            return await self._collect_cached(sport_id, league_ids, match_type, stale_only=stale_only)
        except (asyncio.TimeoutError, PyMongoError) as exc:
            METRIC_FEED_TIER_FAILURES.labels(tier="cache").inc()
            logger.warning("Cache tier unavailable sport_id=%s match_type=%s: %s", sport_id, match_type, exc)
            return []

    async def _collect_cached(
        self,
        sport_id: int,
        league_ids: list[int],
        match_type: str,
        *,
        stale_only: bool = False,
    ) -> list[dict[str, Any]]:
        candidates: dict[str, dict[str, Any]] = {}
        for kind in _kinds_for(match_type):
            fast = {} if stale_only else await self._cached_lists(kind, sport_id, league_ids, stale=False)
            missing = [lid for lid in league_ids if lid not in fast] if league_ids else []
            if stale_only or not league_ids or missing:
                stale = await self._cached_lists(kind, sport_id, missing if league_ids else [], stale=True)
                for lid, rows in stale.items():
                    fast.setdefault(lid, rows)
            for rows in fast.values():
                for row in rows:
                    if isinstance(row, dict):
                        candidates.setdefault(match_id(row), row)
        return list(candidates.values())

    # ---- Side effects ----

    async def _publish_finish_suggestions(self, listing: ListingResult, source: str, published: set[str]) -> None:
        """Publish each flagged match at most once per evaluation, whichever tier saw it first."""
        for match, decision in listing.finish_suggestions:
            if match_id(match) in published:
                continue
            published.add(match_id(match))
            METRIC_FINISH_SUGGESTED.labels(sport_id=str(match.get("sport_id"))).inc()
            await self.bus.publish(
                MatchFinishSuggestedEvent(
                    source=source,
                    match_id=match_id(match),
                    sport_id=int(match.get("sport_id") or 0),
                    start_time=start_time_of(match),
                    elapsed_hours=round(decision.elapsed.total_seconds() / 3600, 2) if decision.elapsed else 0.0,
                )
            )
        if listing.excluded:
            METRIC_RECORDS_EXCLUDED.labels(reason="start_time").inc(listing.excluded)

    async def _odds_counts(self, matches: list[dict[str, Any]]) -> dict[str, int]:
        if not matches:
            return {}
        keys = {feed_cache_service.build_odds_cache_key(match_id(m)): match_id(m) for m in matches}
        try:
            payloads = await asyncio.wait_for(
                feed_cache_service.get_cached_payloads(list(keys)),
                timeout=settings.FEED_CACHE_TIMEOUT_SECONDS,
            )
        except (asyncio.TimeoutError, PyMongoError) as exc:
            logger.warning("Odds counts unavailable: %s", exc)
            return {}
        counts: dict[str, int] = {}
        for key, payload in payloads.items():
            if isinstance(payload, dict):
                counts[keys[key]] = int(payload.get("odds_count") or 0)
        return counts

    async def _format(self, listing: ListingResult, tz_name: str, now: datetime) -> list[MatchFeedItem]:
        counts = await self._odds_counts(listing.matches)
        return [
            format_match(
                match,
                is_live=match_id(match) in listing.live_ids,
                tz_name=tz_name,
                now=now,
                odds_count=counts.get(match_id(match), 0),
            )
            for match in listing.matches
        ]

    # ---- Entry point ----

    async def get_matches(
        self,
        sport_id: Any,
        league_ids: Any = None,
        match_type: Any = MatchType.all.value,
        timezone: str = "UTC",
    ) -> MatchFeedResult:
        sport_id, league_ids, match_type = self.validate_request(sport_id, league_ids, match_type)
        with observe_latency(METRIC_FEED_LATENCY):
            try:
                result = await self._cascade(sport_id, league_ids, match_type, timezone)
            except (InputValidationError, ServiceUnavailable):
                raise
            except Exception:
                logger.exception("Match feed cascade failed sport_id=%s match_type=%s", sport_id, match_type)
                result = await self._rescue(sport_id, league_ids, match_type, timezone)
        METRIC_FEED_TIER_SERVED.labels(source=result.source, cache_status=result.cache_status).inc()
        return result

    async def _cascade(self, sport_id: int, league_ids: list[int], match_type: str, tz_name: str) -> MatchFeedResult:
        now = utcnow()

        published: set[str] = set()
        rows = await self._from_store(sport_id, league_ids, now)
        if rows is not None:
            listing = select_for_listing(rows, match_type, now)
            await self._publish_finish_suggestions(listing, source="feed.store", published=published)
            if listing.matches:
                if needs_refresh(listing.matches, now):
                    self.dispatcher.dispatch(sport_id, league_ids, match_type, reason="stale_store")
                return MatchFeedResult(
                    matches=await self._format(listing, tz_name, now),
                    source=SOURCE_DATABASE,
                    cache_status=STATUS_CURRENT,
                    max_age=settings.FEED_DATABASE_MAX_AGE_SECONDS,
                )

        cached = await self._from_cache(sport_id, league_ids, match_type)
        if cached:
            listing = select_for_listing(cached, match_type, now)
            await self._publish_finish_suggestions(listing, source="feed.cache", published=published)
            if listing.matches:
                self.dispatcher.dispatch(sport_id, league_ids, match_type, reason="cache_fallback")
                return MatchFeedResult(
                    matches=await self._format(listing, tz_name, now),
                    source=SOURCE_CACHE,
                    cache_status=STATUS_STALE,
                    max_age=settings.FEED_CACHE_MAX_AGE_SECONDS,
                    message=MESSAGE_CACHE,
                )

        self.dispatcher.dispatch(sport_id, league_ids, match_type, reason="empty")
        return MatchFeedResult(
            source=SOURCE_NONE,
            cache_status=STATUS_EMPTY,
            max_age=settings.FEED_EMPTY_MAX_AGE_SECONDS,
            message=MESSAGE_EMPTY,
        )

    async def _rescue(self, sport_id: int, league_ids: list[int], match_type: str, tz_name: str) -> MatchFeedResult:
        now = utcnow()
        try:
            cached = await self._from_cache(sport_id, league_ids, match_type, stale_only=True)
            listing = select_for_listing(cached, match_type, now)
            items = [
                format_match(match, is_live=match_id(match) in listing.live_ids, tz_name=tz_name, now=now)
                for match in listing.matches
            ]
        except Exception as exc:
            logger.error("Stale rescue failed sport_id=%s: %s", sport_id, exc)
            raise ServiceUnavailable() from exc
        if not items:
            raise ServiceUnavailable()
        return MatchFeedResult(
            matches=items,
            source=SOURCE_CACHE,
            cache_status=STATUS_STALE_FALLBACK,
            max_age=settings.FEED_RESCUE_MAX_AGE_SECONDS,
            message=MESSAGE_RESCUE,
        )

    async def get_matches_payload(
        self,
        sport_id: Any,
        league_ids: Any = None,
        match_type: Any = MatchType.all.value,
        timezone: str = "UTC",
    ) -> tuple[dict[str, Any], int]:
        """Feed result plus health annotation, shaped for the HTTP layer."""
        sport_id, league_ids, match_type = self.validate_request(sport_id, league_ids, match_type)
        result = await self.get_matches(sport_id, league_ids, match_type, timezone)
        payload: dict[str, Any] = {
            "success": True,
            "data": [item.model_dump() for item in result.matches],
            "total_count": len(result.matches),
            "sport_id": sport_id,
            "match_type": match_type,
            "league_ids": league_ids,
            "timezone": timezone,
            "data_source": result.source,
            "cache_status": result.cache_status,
            "message": result.message,
            "warnings": [],
        }
        status = await self.health.check_health()
        self.health.annotate(payload, status)
        return payload, result.max_age


read_cascade = ReadCascade()
