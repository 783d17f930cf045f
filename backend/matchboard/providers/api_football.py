"""
backend/matchboard/providers/api_football.py

Purpose:
    API-Sports (API-Football and sibling sports) odds and lineups for matches
    that carry an ``api_football_fixture_id``. One base URL per sport.

Dependencies:
    - matchboard.providers.http_client
    - matchboard.config
"""

from __future__ import annotations

import logging
from typing import Any

from matchboard.config import settings
from matchboard.models.odds import OddsQuote
from matchboard.providers.base import BaseOddsProvider, to_float
from matchboard.providers.http_client import ResilientClient
from matchboard.services.market_normalizer import extract_line

logger = logging.getLogger("matchboard.providers.api_football")


def base_url_for_sport(sport_id: int | None) -> str:
    urls = settings.API_FOOTBALL_BASE_URLS
    return urls.get(int(sport_id or 0), urls.get(settings.SOCCER_SPORT_ID, "https://v3.football.api-sports.io"))


def extract_quotes(payload: dict[str, Any]) -> list[OddsQuote]:
    quotes: list[OddsQuote] = []
    for item in payload.get("response") or []:
        for bookmaker in item.get("bookmakers") or []:
            for bet in bookmaker.get("bets") or []:
                bet_name = str(bet.get("name") or "")
                for value in bet.get("values") or []:
                    label = str(value.get("value") or "")
                    if not label:
                        continue
                    quotes.append(
                        OddsQuote(
                            market_type=bet_name,
                            selection=label,
                            line=extract_line(label),
                            price=to_float(value.get("odd")),
                            period="Game",
                            status="open",
                            provider="api_football",
                        )
                    )
    return quotes


class ApiFootballProvider(BaseOddsProvider):
    name = "api_football"

    def __init__(self, clients: dict[str, ResilientClient] | None = None):
        self._clients: dict[str, ResilientClient] = dict(clients or {})

    @property
    def enabled(self) -> bool:
        return bool(settings.API_FOOTBALL_ENABLED and settings.API_FOOTBALL_API_KEY)

    def _client_for(self, sport_id: int | None) -> ResilientClient:
        base_url = base_url_for_sport(sport_id)
        client = self._clients.get(base_url)
        if client is None:
            client = ResilientClient(
                "api_football",
                base_url=base_url,
                headers={"x-apisports-key": settings.API_FOOTBALL_API_KEY},
                timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            )
            self._clients[base_url] = client
        return client

    @staticmethod
    def _fixture_id(match: dict[str, Any]) -> int | None:
        raw = match.get("api_football_fixture_id")
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None

    async def get_match_quotes(self, match: dict[str, Any]) -> list[OddsQuote]:
        fixture_id = self._fixture_id(match)
        if fixture_id is None:
            return []
        payload = await self._client_for(match.get("sport_id")).get_json(
            "/odds", params={"fixture": fixture_id}
        )
        return extract_quotes(payload if isinstance(payload, dict) else {})

    async def get_lineups(self, match: dict[str, Any]) -> list[dict[str, Any]]:
        fixture_id = self._fixture_id(match)
        if fixture_id is None:
            return []
        payload = await self._client_for(match.get("sport_id")).get_json(
            "/fixtures/lineups", params={"fixture": fixture_id}
        )
        if not isinstance(payload, dict):
            return []
        return [row for row in payload.get("response") or [] if isinstance(row, dict)]

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()


api_football_provider = ApiFootballProvider()
