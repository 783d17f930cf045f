"""
backend/tests/test_match_visibility.py

Purpose:
    Live/prematch visibility rules, self-heal suggestions and listing order.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from matchboard.errors import DataInconsistency
from matchboard.services.match_visibility import (
    classify,
    classify_for_listing,
    is_available_for_betting,
    is_live_visible,
    is_prematch_eligible,
    max_duration_for_sport,
    select_for_listing,
    start_time_of,
)

NOW = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)


def _match(event_id="m1", *, sport_id=1, start_offset=timedelta(0), **extra):
    doc = {
        "event_id": event_id,
        "sport_id": sport_id,
        "league_id": 10,
        "home_team": "Home FC",
        "away_team": "Away FC",
        "start_time": NOW + start_offset,
        "live_status": 0,
        "home_score": 0,
        "away_score": 0,
        "has_open_markets": False,
        "last_updated": NOW,
    }
    doc.update(extra)
    return doc


@pytest.mark.parametrize("status", [2, -1])
def test_terminal_status_is_never_live(status):
    match = _match(start_offset=-timedelta(minutes=30), live_status=status, has_open_markets=True, home_score=2)
    assert is_live_visible(match, NOW) is False
    assert classify_for_listing(match, "live", NOW) is False


def test_future_start_is_never_live_even_with_live_flag():
    match = _match(start_offset=timedelta(minutes=5), live_status=1, has_open_markets=True)
    decision = classify(match, NOW)
    assert decision.is_live is False
    assert decision.reason == "not_started"


def test_live_signals_after_kickoff():
    started = -timedelta(minutes=40)
    assert classify(_match(start_offset=started, live_status=1), NOW).reason == "live_flag"
    assert classify(_match(start_offset=started, has_open_markets=True), NOW).reason == "open_markets"
    assert classify(_match(start_offset=started, away_score=1), NOW).reason == "scored"


def test_grace_period_right_after_kickoff():
    decision = classify(_match(start_offset=-timedelta(minutes=10)), NOW)
    assert decision.is_live is True
    assert decision.reason == "grace_period"
    assert decision.mark_finished is False


def test_explicit_live_flag_stays_live_past_max_duration():
    decision = classify(_match(start_offset=-timedelta(hours=5), live_status=1), NOW)
    assert decision.is_live is True
    assert decision.mark_finished is False


def test_expired_match_without_signals_suggests_finish():
    decision = classify(_match(start_offset=-timedelta(hours=5)), NOW)
    assert decision.is_live is False
    assert decision.reason == "expired"
    assert decision.mark_finished is True
    assert decision.elapsed == timedelta(hours=5)


def test_max_duration_is_per_sport():
    assert max_duration_for_sport(1) == timedelta(hours=3)
    assert max_duration_for_sport(999) == timedelta(hours=4)
    # 3.5h: expired for soccer, still in grace for a sport on the default window.
    offset = -timedelta(hours=3, minutes=30)
    assert classify(_match(sport_id=1, start_offset=offset), NOW).mark_finished is True
    assert classify(_match(sport_id=7, start_offset=offset), NOW).mark_finished is False


def test_stale_soccer_match_produces_exactly_one_finish_suggestion():
    matches = [
        _match("stale", start_offset=-timedelta(hours=5)),
        _match("live", start_offset=-timedelta(minutes=30), live_status=1),
        _match("upcoming", start_offset=timedelta(hours=3)),
    ]
    result = select_for_listing(matches, "live", NOW)
    assert [m["event_id"] for m in result.matches] == ["live"]
    assert [m["event_id"] for m, _ in result.finish_suggestions] == ["stale"]


def test_prematch_horizon():
    assert is_prematch_eligible(_match(start_offset=timedelta(hours=20)), NOW) is True
    assert is_prematch_eligible(_match(start_offset=timedelta(days=3)), NOW) is False
    assert is_prematch_eligible(_match(start_offset=-timedelta(minutes=1)), NOW) is False
    assert is_prematch_eligible(_match(start_offset=timedelta(hours=1), live_status=-1), NOW) is False


def test_available_for_betting():
    upcoming = _match(start_offset=timedelta(hours=1), betting_availability="available_for_betting")
    assert is_available_for_betting(upcoming, NOW) is True
    assert is_available_for_betting(_match(start_offset=timedelta(hours=1)), NOW) is False
    assert is_available_for_betting(_match(start_offset=-timedelta(hours=1), live_status=1), NOW) is False


def test_unscheduled_match_is_hidden():
    assert classify(_match(start_time=None), NOW).reason == "unscheduled"


def test_unparseable_start_time_raises_and_listing_excludes():
    bad = _match("bad", start_time="not-a-date")
    with pytest.raises(DataInconsistency):
        start_time_of(bad)
    result = select_for_listing([bad, _match("ok", start_offset=timedelta(hours=2))], "all", NOW)
    assert [m["event_id"] for m in result.matches] == ["ok"]
    assert result.excluded == 1


def test_unparseable_start_time_is_never_listed(caplog):
    bad = _match("bad", start_time="not-a-date", live_status=1)
    with caplog.at_level("WARNING", logger="matchboard.match_visibility"):
        assert is_live_visible(bad, NOW) is False
        for match_type in ("live", "prematch", "all", "available_for_betting"):
            assert classify_for_listing(bad, match_type, NOW) is False
    assert "unparseable start_time" in caplog.text


def test_string_start_time_is_accepted():
    match = _match(start_time=(NOW - timedelta(minutes=20)).isoformat(), live_status=1)
    assert is_live_visible(match, NOW) is True


def test_all_listing_puts_live_first():
    matches = [
        _match("soon", start_offset=timedelta(hours=1)),
        _match("later", start_offset=timedelta(hours=6)),
        _match("live", start_offset=-timedelta(minutes=50), live_status=1),
    ]
    result = select_for_listing(matches, "all", NOW)
    assert result.matches[0]["event_id"] == "live"
    assert result.live_ids == {"live"}


def test_prematch_listing_sorted_by_start_ascending():
    matches = [
        _match("later", start_offset=timedelta(hours=6)),
        _match("soon", start_offset=timedelta(hours=1)),
    ]
    result = select_for_listing(matches, "prematch", NOW)
    assert [m["event_id"] for m in result.matches] == ["soon", "later"]


def test_live_listing_most_recent_start_first():
    matches = [
        _match("early", start_offset=-timedelta(minutes=80), live_status=1),
        _match("recent", start_offset=-timedelta(minutes=10), live_status=1),
    ]
    result = select_for_listing(matches, "live", NOW)
    assert [m["event_id"] for m in result.matches] == ["recent", "early"]
