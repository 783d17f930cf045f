"""
backend/matchboard/services/match_visibility.py

Purpose:
    Decide whether a match is visible as live, prematch or not at all, and
    flag matches that have outlived their sport's maximum duration so the
    store can be corrected. Pure: no I/O, the caller publishes suggestions.

Dependencies:
    - matchboard.config
    - matchboard.errors
    - matchboard.models.match
    - matchboard.utils
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from matchboard.config import settings
from matchboard.errors import DataInconsistency
from matchboard.models.match import TERMINAL_STATUSES, LiveStatus, MatchType
from matchboard.utils import ensure_utc, parse_utc

logger = logging.getLogger("matchboard.match_visibility")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class VisibilityDecision:
    is_live: bool
    reason: str
    mark_finished: bool = False
    elapsed: timedelta | None = None


@dataclass
class ListingResult:
    matches: list[dict[str, Any]] = field(default_factory=list)
    live_ids: set[str] = field(default_factory=set)
    finish_suggestions: list[tuple[dict[str, Any], VisibilityDecision]] = field(default_factory=list)
    excluded: int = 0


def max_duration_for_sport(sport_id: int | None) -> timedelta:
    hours = settings.MATCH_MAX_DURATION_HOURS.get(
        int(sport_id) if sport_id is not None else -1,
        settings.MATCH_DEFAULT_MAX_DURATION_HOURS,
    )
    return timedelta(hours=float(hours))


def match_id(match: dict[str, Any]) -> str:
    return str(match.get("event_id") or match.get("id") or match.get("_id") or "")


def live_status_of(match: dict[str, Any]) -> LiveStatus:
    raw = match.get("live_status")
    try:
        return LiveStatus(int(raw))
    except (TypeError, ValueError):
        return LiveStatus.scheduled


def start_time_of(match: dict[str, Any]) -> datetime | None:
    """Return the match start as aware UTC, ``None`` for TBD.

    Raises DataInconsistency when a value is present but unusable.
    """
    raw = match.get("start_time")
    if raw is None or raw == "":
        return None
    try:
        return parse_utc(raw)
    except (TypeError, ValueError) as exc:
        raise DataInconsistency(match_id(match), f"unparseable start_time {raw!r}") from exc


def _score(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def has_score(match: dict[str, Any]) -> bool:
    return _score(match.get("home_score")) > 0 or _score(match.get("away_score")) > 0


def classify(match: dict[str, Any], now: datetime) -> VisibilityDecision:
    """Apply the live-visibility rules in order; the first rule that fires decides."""
    status = live_status_of(match)
    if status == LiveStatus.cancelled:
        return VisibilityDecision(False, "cancelled")
    if status == LiveStatus.finished:
        return VisibilityDecision(False, "finished")

    start = start_time_of(match)
    now = ensure_utc(now)
    if start is None:
        return VisibilityDecision(False, "unscheduled")
    if start > now:
        return VisibilityDecision(False, "not_started")

    if status == LiveStatus.live:
        return VisibilityDecision(True, "live_flag")
    if match.get("has_open_markets"):
        return VisibilityDecision(True, "open_markets")
    if has_score(match):
        return VisibilityDecision(True, "scored")

    elapsed = now - start
    if elapsed > max_duration_for_sport(match.get("sport_id")):
        return VisibilityDecision(False, "expired", mark_finished=True, elapsed=elapsed)
    # Just started, provider has not confirmed play yet.
    return VisibilityDecision(True, "grace_period", elapsed=elapsed)


def is_live_visible(match: dict[str, Any], now: datetime) -> bool:
    try:
        return classify(match, now).is_live
    except DataInconsistency as exc:
        logger.warning("Match not live-visible: %s", exc)
        return False


def is_prematch_eligible(match: dict[str, Any], now: datetime) -> bool:
    if live_status_of(match) in TERMINAL_STATUSES:
        return False
    start = start_time_of(match)
    if start is None:
        return False
    now = ensure_utc(now)
    return now < start <= now + timedelta(days=settings.PREMATCH_HORIZON_DAYS)


def is_available_for_betting(match: dict[str, Any], now: datetime) -> bool:
    """Upcoming match whose live-betting window is already open."""
    if live_status_of(match) in TERMINAL_STATUSES:
        return False
    start = start_time_of(match)
    if start is None or start <= ensure_utc(now):
        return False
    return (
        live_status_of(match) == LiveStatus.live
        or match.get("betting_availability") == MatchType.available_for_betting.value
    )


def classify_for_listing(match: dict[str, Any], match_type: str, now: datetime) -> bool:
    match_type = MatchType(match_type)
    try:
        if match_type == MatchType.live:
            return classify(match, now).is_live and live_status_of(match) not in TERMINAL_STATUSES
        if match_type == MatchType.prematch:
            return is_prematch_eligible(match, now)
        if match_type == MatchType.available_for_betting:
            return is_available_for_betting(match, now)
        return classify(match, now).is_live or is_prematch_eligible(match, now)
    except DataInconsistency as exc:
        logger.warning("Excluding match from %s listing: %s", match_type.value, exc)
        return False


def _ts(value: Any) -> float:
    if value is None or value == "":
        return _EPOCH.timestamp()
    try:
        return parse_utc(value).timestamp()
    except (TypeError, ValueError):
        return _EPOCH.timestamp()


def sort_for_listing(matches: list[dict[str, Any]], match_type: str, live_ids: set[str]) -> list[dict[str, Any]]:
    match_type = MatchType(match_type)
    if match_type in (MatchType.prematch, MatchType.available_for_betting):
        return sorted(matches, key=lambda m: _ts(m.get("start_time")))
    if match_type == MatchType.live:
        return sorted(matches, key=lambda m: (-_ts(m.get("start_time")), -_ts(m.get("last_updated"))))
    return sorted(
        matches,
        key=lambda m: (
            0 if match_id(m) in live_ids else 1,
            -_ts(m.get("start_time")),
            -_ts(m.get("last_updated")),
        ),
    )


def select_for_listing(matches: list[dict[str, Any]], match_type: str, now: datetime) -> ListingResult:
    """Filter and order candidate matches for one listing.

    Every match is classified exactly once. Records with an unusable
    start_time are excluded and logged; matches past their sport's maximum
    duration are returned as finish suggestions for the caller to publish.
    """
    match_type = MatchType(match_type)
    result = ListingResult()
    for match in matches:
        try:
            decision = classify(match, now)
            if decision.mark_finished:
                result.finish_suggestions.append((match, decision))
            if match_type == MatchType.live:
                include = decision.is_live and live_status_of(match) not in TERMINAL_STATUSES
            elif match_type == MatchType.prematch:
                include = is_prematch_eligible(match, now)
            elif match_type == MatchType.available_for_betting:
                include = is_available_for_betting(match, now)
            else:
                include = decision.is_live or is_prematch_eligible(match, now)
        except DataInconsistency as exc:
            result.excluded += 1
            logger.warning("Excluding match from listing: %s", exc)
            continue
        if not include:
            continue
        if decision.is_live:
            result.live_ids.add(match_id(match))
        result.matches.append(match)
    result.matches = sort_for_listing(result.matches, match_type.value, result.live_ids)
    return result
