"""
backend/matchboard/providers/odds_feed.py

Purpose:
    Odds-Feed REST client. Returns flat per-match odds rows whose field names
    vary between feed versions; disabled unless configured.

Dependencies:
    - matchboard.providers.http_client
    - matchboard.config
"""

from __future__ import annotations

import logging
from typing import Any

from matchboard.config import settings
from matchboard.models.odds import OddsQuote
from matchboard.providers.base import BaseOddsProvider, first_present, to_float
from matchboard.providers.http_client import ResilientClient
from matchboard.providers.pinnacle import event_type_for

logger = logging.getLogger("matchboard.providers.odds_feed")


def extract_quotes(payload: Any) -> list[OddsQuote]:
    if isinstance(payload, dict):
        rows = payload.get("data") or payload.get("odds") or []
    elif isinstance(payload, list):
        rows = payload
    else:
        rows = []

    quotes: list[OddsQuote] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        market = first_present(row, "market_type", "market", "bet_type")
        selection = first_present(row, "selection", "outcome", "pick")
        if not market or not selection:
            logger.debug("Skipping Odds-Feed row without market or selection: %s", row)
            continue
        event_id = first_present(row, "event_id", "match_id")
        quotes.append(
            OddsQuote(
                market_type=str(market),
                bet_type=str(row["bet_type"]) if row.get("bet_type") else str(market),
                selection=str(selection),
                line=to_float(first_present(row, "line", "handicap", "spread", "total")),
                price=to_float(first_present(row, "price", "odds", "decimal_odds")),
                period=str(row.get("period") or "Game"),
                status=str(row.get("status") or "open").lower(),
                provider="odds_feed",
                event_id=str(event_id) if event_id is not None else None,
            )
        )
    return quotes


class OddsFeedProvider(BaseOddsProvider):
    name = "odds_feed"

    def __init__(self, client: ResilientClient | None = None):
        self._client = client or ResilientClient(
            "odds_feed",
            base_url=settings.ODDS_FEED_BASE_URL,
            headers={
                "Authorization": f"Bearer {settings.ODDS_FEED_API_KEY}",
                "Accept": "application/json",
            },
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )

    @property
    def enabled(self) -> bool:
        return bool(settings.ODDS_FEED_ENABLED and settings.ODDS_FEED_API_KEY)

    async def get_match_quotes(self, match: dict[str, Any]) -> list[OddsQuote]:
        event_id = str(match.get("event_id") or "")
        if not event_id:
            return []
        payload = await self._client.get_json(
            f"/matches/{event_id}/odds",
            params={"event_type": event_type_for(match)},
        )
        return extract_quotes(payload)

    async def aclose(self) -> None:
        await self._client.aclose()


odds_feed_provider = OddsFeedProvider()
