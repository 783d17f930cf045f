"""
backend/matchboard/routers/matches.py

Purpose:
    Match feed API: tiered match listing, aggregated odds per match and a
    manual refresh trigger.

Dependencies:
    - matchboard.services.match_feed_service
    - matchboard.services.odds_aggregation_service
    - matchboard.services.refresh_dispatcher
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Query, Response

from matchboard.errors import InputValidationError
from matchboard.models.match import MatchFeedResponse, RefreshRequest, RefreshResponse
from matchboard.models.odds import MatchOddsResponse
from matchboard.services.match_feed_service import read_cascade, resolve_timezone
from matchboard.services.odds_aggregation_service import odds_service
from matchboard.services.refresh_dispatcher import refresh_dispatcher

logger = logging.getLogger("matchboard.matches")

router = APIRouter(prefix="/api/matches", tags=["matches"])


def _parse_league_ids(raw: Optional[str]) -> list[int]:
    if not raw:
        return []
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise InputValidationError("league_ids must be a comma-separated list of integers") from None


@router.get("", response_model=MatchFeedResponse)
async def list_matches(
    response: Response,
    sport_id: Optional[str] = Query(None, description="Sport id"),
    league_ids: Optional[str] = Query(None, description="Comma-separated league ids"),
    match_type: str = Query("all", description="live, prematch, all or available_for_betting"),
    timezone: Optional[str] = Query(None, description="IANA timezone for scheduled_time"),
    x_timezone: Optional[str] = Header(None),
    accept_language: Optional[str] = Header(None),
):
    """Matches for a sport, served from the freshest tier that has data."""
    tz_name = resolve_timezone(timezone, x_timezone, accept_language)
    payload, max_age = await read_cascade.get_matches_payload(
        sport_id,
        _parse_league_ids(league_ids),
        match_type,
        tz_name,
    )
    response.headers["Cache-Control"] = f"private, max-age={max_age}"
    response.headers["X-Data-Source"] = payload["data_source"]
    return payload


@router.get("/{match_id}/odds", response_model=MatchOddsResponse)
async def match_odds(
    match_id: str,
    sport_id: Optional[str] = Query(None, description="Sport id"),
    period: str = Query("all"),
    market_type: str = Query("money_line"),
):
    """Aggregated, deduplicated odds across all configured providers."""
    return await odds_service.get_match_odds(match_id, sport_id, period=period, market_type=market_type)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_matches(body: RefreshRequest):
    """Queue a refresh for every league of a sport, ignoring the cooldown."""
    if body.sport_id <= 0:
        raise InputValidationError("sport_id must be a positive integer")
    tasks = await refresh_dispatcher.request_refresh(
        body.sport_id,
        [],
        body.match_type.value,
        reason="manual",
        bypass_cooldown=True,
    )
    return RefreshResponse(sport_id=body.sport_id, match_type=body.match_type.value, tasks=tasks)
