"""
backend/tests/test_providers.py

Purpose:
    Provider payload extraction and the resilient HTTP client, driven through
    httpx.MockTransport (no network).
"""

from __future__ import annotations

import httpx
import pytest

from matchboard.errors import UpstreamUnavailable
from matchboard.providers import api_football, odds_feed, pinnacle
from matchboard.providers.http_client import CircuitBreaker, ResilientClient

PINNACLE_MARKETS = {
    "events": [
        {
            "event_id": 1001,
            "periods": [
                {
                    "period": "Game",
                    "markets": [
                        {
                            "name": "Money Line",
                            "lines": [
                                {"name": "Home", "odds": 1.85},
                                {"name": "Away", "odds": 2.05, "status": "closed"},
                            ],
                        },
                        {"name": "Total", "lines": [{"name": "Over", "line": 2.5, "odds": 1.95}]},
                    ],
                }
            ],
        }
    ]
}

PINNACLE_SPECIALS = {
    "specials": [
        {"name": "Home FC total corners", "open": False, "lines": [{"name": "Over", "line": 9.5, "price": 1.9}]},
    ],
    "special_markets": [
        {"name": "Away FC anytime scorer", "event_id": 1001, "outcomes": [{"outcome": "J. Doe", "odds": 3.2}]},
    ],
}


def _client(handler, name="test"):
    return ResilientClient(
        name,
        base_url="https://provider.test",
        transport=httpx.MockTransport(handler),
        max_retries=1,
        base_delay=0,
    )


def test_pinnacle_market_extraction():
    quotes = pinnacle.extract_market_quotes(PINNACLE_MARKETS)
    assert [(q.market_type, q.selection, q.price, q.status) for q in quotes] == [
        ("Money Line", "Home", 1.85, "open"),
        ("Money Line", "Away", 2.05, "closed"),
        ("Total", "Over", 1.95, "open"),
    ]
    assert all(q.event_id == "1001" for q in quotes)
    assert quotes[2].line == 2.5


def test_pinnacle_special_extraction():
    quotes = pinnacle.extract_special_quotes(PINNACLE_SPECIALS)
    assert [(q.selection, q.status, q.event_id) for q in quotes] == [
        ("Over", "closed", None),
        ("J. Doe", "open", "1001"),
    ]


def test_pinnacle_event_type():
    assert pinnacle.event_type_for({"live_status": 1}) == "live"
    assert pinnacle.event_type_for({"live_status": 0}) == "prematch"
    assert pinnacle.event_type_for({"event_type": "live"}) == "live"


def test_odds_feed_extraction_handles_field_variants():
    payload = {
        "data": [
            {"market": "Spread", "pick": "Home", "handicap": "-1.5", "decimal_odds": "2.10", "match_id": "m1"},
            {"market_type": "Totals", "selection": "Under", "total": 210.5, "price": 1.9, "status": "OPEN"},
            {"market_type": "Totals", "price": 1.9},
        ]
    }
    quotes = odds_feed.extract_quotes(payload)
    assert len(quotes) == 2
    assert (quotes[0].line, quotes[0].price, quotes[0].event_id) == (-1.5, 2.1, "m1")
    assert quotes[1].status == "open"
    assert odds_feed.extract_quotes([{"market": "1x2", "outcome": "Draw", "odds": 3.3}])[0].selection == "Draw"


def test_api_football_extraction():
    payload = {
        "response": [
            {
                "bookmakers": [
                    {
                        "bets": [
                            {"name": "Match Winner", "values": [{"value": "Home", "odd": "1.90"}]},
                            {"name": "Goals Over/Under", "values": [{"value": "Over 2.5", "odd": "1.80"}]},
                        ]
                    }
                ]
            }
        ]
    }
    quotes = api_football.extract_quotes(payload)
    assert [(q.market_type, q.selection, q.line, q.price) for q in quotes] == [
        ("Match Winner", "Home", None, 1.9),
        ("Goals Over/Under", "Over 2.5", 2.5, 1.8),
    ]
    assert all(q.event_id is None for q in quotes)


def test_api_football_base_url_per_sport():
    assert "basketball" in api_football.base_url_for_sport(3)
    assert "football" in api_football.base_url_for_sport(999)


@pytest.mark.asyncio
async def test_pinnacle_provider_tolerates_special_market_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/markets":
            return httpx.Response(200, json=PINNACLE_MARKETS)
        return httpx.Response(404)

    provider = pinnacle.PinnacleProvider(client=_client(handler, "pinnacle"))
    quotes = await provider.get_match_quotes({"event_id": "1001", "sport_id": 1, "live_status": 0})
    assert len(quotes) == 3
    await provider.aclose()


@pytest.mark.asyncio
async def test_pinnacle_provider_raises_when_markets_fail():
    provider = pinnacle.PinnacleProvider(client=_client(lambda request: httpx.Response(500), "pinnacle"))
    with pytest.raises(UpstreamUnavailable):
        await provider.get_match_quotes({"event_id": "1001", "sport_id": 1})
    await provider.aclose()


@pytest.mark.asyncio
async def test_api_football_lineups_and_missing_fixture():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["fixture"] == "55"
        return httpx.Response(200, json={"response": [{"startXI": [{"player": {"name": "P. One"}}]}]})

    client = _client(handler, "api_football")
    provider = api_football.ApiFootballProvider(clients={api_football.base_url_for_sport(1): client})
    lineups = await provider.get_lineups({"sport_id": 1, "api_football_fixture_id": 55})
    assert lineups[0]["startXI"][0]["player"]["name"] == "P. One"
    assert await provider.get_match_quotes({"sport_id": 1}) == []
    await provider.aclose()


@pytest.mark.asyncio
async def test_resilient_client_retries_transient_status():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"ok": True})

    client = _client(handler)
    assert await client.get_json("/ping") == {"ok": True}
    assert calls["n"] == 2
    await client.aclose()


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(400)

    client = _client(handler)
    for _ in range(3):
        with pytest.raises(UpstreamUnavailable):
            await client.get_json("/odds")
    assert client.circuit.is_open is True
    with pytest.raises(UpstreamUnavailable, match="circuit open"):
        await client.get_json("/odds")
    assert calls["n"] == 3
    await client.aclose()


def test_circuit_breaker_half_opens_after_timeout():
    breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0)
    breaker.record_failure()
    assert breaker.is_open is True
    breaker.last_failure_time -= 1
    assert breaker.can_attempt() is True
    breaker.record_success()
    assert breaker.is_open is False
