"""
backend/matchboard/providers/pinnacle.py

Purpose:
    Pinnacle odds via RapidAPI. Standard markets come from ``/markets``
    (events -> periods -> markets -> lines, tagged with event_id); special
    markets come from ``/special-markets`` and are usually untagged.

Dependencies:
    - matchboard.providers.http_client
    - matchboard.config
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from matchboard.config import settings
from matchboard.models.match import LiveStatus
from matchboard.models.odds import OddsQuote
from matchboard.providers.base import BaseOddsProvider, first_present, to_float
from matchboard.providers.http_client import ResilientClient

logger = logging.getLogger("matchboard.providers.pinnacle")


def event_type_for(match: dict[str, Any]) -> str:
    if match.get("event_type") == "live":
        return "live"
    try:
        return "live" if int(match.get("live_status") or 0) == LiveStatus.live else "prematch"
    except (TypeError, ValueError):
        return "prematch"


def _line_is_open(line: dict[str, Any], market: dict[str, Any]) -> bool:
    return str(line.get("status") or market.get("status") or "open").lower() == "open"


def extract_market_quotes(payload: dict[str, Any]) -> list[OddsQuote]:
    quotes: list[OddsQuote] = []
    for event in payload.get("events") or []:
        if not isinstance(event, dict):
            continue
        event_id = event.get("event_id")
        for period in event.get("periods") or []:
            period_name = str(period.get("period") or "Game")
            for market in period.get("markets") or []:
                for line in market.get("lines") or []:
                    quotes.append(
                        OddsQuote(
                            market_type=str(market.get("name") or ""),
                            bet_type=market.get("bet_type"),
                            selection=str(first_present(line, "name", "outcome") or ""),
                            line=to_float(first_present(line, "line", "handicap")),
                            price=to_float(first_present(line, "odds", "price")),
                            period=period_name,
                            status="open" if _line_is_open(line, market) else "closed",
                            provider="pinnacle",
                            event_id=str(event_id) if event_id is not None else None,
                        )
                    )
    return quotes


def extract_special_quotes(payload: dict[str, Any]) -> list[OddsQuote]:
    quotes: list[OddsQuote] = []
    markets = list(payload.get("specials") or []) + list(payload.get("special_markets") or [])
    for market in markets:
        if not isinstance(market, dict):
            continue
        is_open = market.get("open", market.get("is_open", True))
        event_id = market.get("event_id")
        for line in list(market.get("lines") or []) + list(market.get("outcomes") or []):
            quotes.append(
                OddsQuote(
                    market_type=str(market.get("name") or ""),
                    bet_type=market.get("bet_type"),
                    selection=str(first_present(line, "name", "outcome") or ""),
                    line=to_float(first_present(line, "line", "handicap")),
                    price=to_float(first_present(line, "odds", "price")),
                    period=str(market.get("period") or "Game"),
                    status="open" if is_open else "closed",
                    provider="pinnacle",
                    event_id=str(event_id) if event_id is not None else None,
                )
            )
    return quotes


class PinnacleProvider(BaseOddsProvider):
    name = "pinnacle"

    def __init__(self, client: ResilientClient | None = None):
        self._client = client or ResilientClient(
            "pinnacle",
            base_url=settings.PINNACLE_BASE_URL,
            headers={
                "x-rapidapi-host": settings.PINNACLE_RAPIDAPI_HOST,
                "x-rapidapi-key": settings.PINNACLE_API_KEY,
            },
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )

    @property
    def enabled(self) -> bool:
        return bool(settings.PINNACLE_ENABLED and settings.PINNACLE_API_KEY)

    async def get_match_quotes(self, match: dict[str, Any]) -> list[OddsQuote]:
        sport_id = int(match.get("sport_id") or 0)
        event_type = event_type_for(match)
        markets, specials = await asyncio.gather(
            self._client.get_json(
                "/markets",
                params={"sport_id": sport_id, "event_type": event_type, "is_have_odds": "true"},
            ),
            self._client.get_json(
                "/special-markets",
                params={"sport_id": sport_id, "event_type": event_type},
            ),
            return_exceptions=True,
        )
        if isinstance(markets, BaseException):
            raise markets

        quotes = extract_market_quotes(markets if isinstance(markets, dict) else {})
        if isinstance(specials, BaseException):
            logger.warning("Pinnacle special markets unavailable sport_id=%s: %s", sport_id, specials)
        elif isinstance(specials, dict):
            quotes.extend(extract_special_quotes(specials))
        return quotes

    async def aclose(self) -> None:
        await self._client.aclose()


pinnacle_provider = PinnacleProvider()
