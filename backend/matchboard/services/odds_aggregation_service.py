"""
backend/matchboard/services/odds_aggregation_service.py

Purpose:
    Provider-agnostic odds aggregation. Fans out to every enabled odds
    provider, keeps only quotes that belong to the requested event, normalizes
    and deduplicates them without averaging, and optionally synthesizes
    player-prop markets from lineups.

Dependencies:
    - matchboard.providers
    - matchboard.services.market_normalizer
    - matchboard.services.match_repository
    - matchboard.monitoring.feed_metrics
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Iterable
from typing import Any

from pymongo.errors import PyMongoError

from matchboard.config import settings
from matchboard.errors import InputValidationError, ServiceUnavailable, UpstreamUnavailable
from matchboard.models.odds import STANDARD_MARKETS, AggregatedOdds, MarketType, MatchOddsResponse, OddsQuote
from matchboard.monitoring.feed_metrics import (
    METRIC_ODDS_DEDUPLICATED,
    METRIC_ODDS_DROPPED,
    METRIC_ODDS_LATENCY,
    METRIC_PROVIDER_FAILURES,
    observe_latency,
)
from matchboard.providers.api_football import api_football_provider
from matchboard.providers.base import BaseOddsProvider
from matchboard.providers.odds_feed import odds_feed_provider
from matchboard.providers.pinnacle import pinnacle_provider
from matchboard.services.market_normalizer import (
    normalize_line,
    normalize_market_type,
    normalize_selection,
    round_price,
)
from matchboard.services.match_repository import MatchRepository

logger = logging.getLogger("matchboard.odds_aggregation")

ALL = "all"
REQUESTABLE_MARKETS = frozenset({ALL, *(m.value for m in MarketType if m is not MarketType.unknown)})
_STANDARD = frozenset(m.value for m in STANDARD_MARKETS)

PLACEHOLDER_PLAYERS = ("Player A", "Player B", "Player C", "Player D")
_PROP_TYPES: dict[str, tuple[str, ...]] = {
    "soccer": ("Goals", "Assists", "Shots", "Cards"),
    "basketball": ("Points", "Rebounds", "Assists", "Steals"),
    "default": ("Goals", "Assists", "Points", "Rebounds"),
}
_PROP_LINE = 0.5

DedupKey = tuple[str, str, float | None, float, str]


def prop_types_for_sport(sport_id: int | None) -> tuple[str, ...]:
    if sport_id == settings.SOCCER_SPORT_ID:
        return _PROP_TYPES["soccer"]
    if sport_id == settings.BASKETBALL_SPORT_ID:
        return _PROP_TYPES["basketball"]
    return _PROP_TYPES["default"]


def players_from_lineups(lineups: Iterable[dict[str, Any]] | None, limit: int | None = None) -> list[str]:
    limit = int(limit or settings.PLAYER_PROPS_MAX_PLAYERS)
    names: list[str] = []
    for lineup in lineups or []:
        for entry in lineup.get("startXI") or []:
            name = ((entry or {}).get("player") or {}).get("name")
            if name:
                names.append(str(name))
    return names[:limit]


def _format_line(line: float | None) -> str:
    return f"{line:g}" if line else ""


def bet_label(market_type: str, selection: str, line: float | None) -> str:
    if market_type == MarketType.money_line.value:
        return f"Match Winner {selection}"
    if market_type == MarketType.spreads.value:
        return " ".join(part for part in ("Spread", selection, _format_line(line)) if part)
    if market_type == MarketType.totals.value:
        return " ".join(part for part in ("Total", selection, _format_line(line)) if part)
    return selection


def synthetic_price(event_id: str, player: str, prop: str, side: str) -> float:
    """Stable pseudo-price in [1.50, 2.50] so repeated requests agree."""
    digest = hashlib.sha1(f"{event_id}|{player}|{prop}|{side}".encode("utf-8"), usedforsecurity=False)
    return round(1.5 + (int(digest.hexdigest()[:8], 16) % 101) / 100, 2)


class OddsAggregator:
    """Pure merge of per-provider quote lists for one event."""

    def aggregate(
        self,
        event_id: str,
        provider_quote_lists: Iterable[Iterable[OddsQuote]],
        *,
        home_team: str = "",
        away_team: str = "",
    ) -> list[AggregatedOdds]:
        target = str(event_id)
        team_names = [name.strip().lower() for name in (home_team, away_team) if name and name.strip()]
        merged: dict[DedupKey, AggregatedOdds] = {}

        for quotes in provider_quote_lists:
            for quote in quotes:
                market = normalize_market_type(quote.market_type, quote.bet_type)
                if quote.event_id is not None:
                    if str(quote.event_id) != target:
                        METRIC_ODDS_DROPPED.labels(reason="other_event").inc()
                        continue
                elif market not in _STANDARD:
                    text = f"{quote.selection} {quote.market_type}".lower()
                    if not any(name in text for name in team_names):
                        METRIC_ODDS_DROPPED.labels(reason="unmatched_event").inc()
                        continue
                if market == MarketType.unknown.value:
                    METRIC_ODDS_DROPPED.labels(reason="unknown_market").inc()
                    continue
                price = round_price(quote.price)
                if price is None:
                    METRIC_ODDS_DROPPED.labels(reason="invalid_price").inc()
                    continue

                line = normalize_line(quote.line)
                key: DedupKey = (market, normalize_selection(quote.selection), line, price, quote.period)
                existing = merged.get(key)
                if existing is None:
                    merged[key] = AggregatedOdds(
                        market_type=market,
                        selection=quote.selection.strip(),
                        line=line,
                        price=price,
                        period=quote.period,
                        status=quote.status,
                        bet=bet_label(market, quote.selection.strip(), line),
                        providers=[quote.provider],
                    )
                    continue
                METRIC_ODDS_DEDUPLICATED.labels(market=market).inc()
                if quote.provider not in existing.providers:
                    existing.providers.append(quote.provider)

        return list(merged.values())

    def synthesize_player_props(
        self,
        event_id: str,
        sport_id: int | None,
        lineups: Iterable[dict[str, Any]] | None,
    ) -> list[AggregatedOdds]:
        players = players_from_lineups(lineups) or list(PLACEHOLDER_PLAYERS)
        records: list[AggregatedOdds] = []
        for player in players:
            for prop in prop_types_for_sport(sport_id):
                for side in ("Over", "Under"):
                    selection = f"{player} - {prop} {side}"
                    records.append(
                        AggregatedOdds(
                            market_type=MarketType.player_props.value,
                            selection=selection,
                            line=_PROP_LINE,
                            price=synthetic_price(str(event_id), player, prop, side),
                            period="Game",
                            status="open",
                            bet=f"{selection} {_PROP_LINE:g}",
                            providers=[],
                            source="generated",
                        )
                    )
        return records

    @staticmethod
    def select(records: list[AggregatedOdds], *, market_type: str = ALL, period: str = ALL) -> list[AggregatedOdds]:
        return [
            record
            for record in records
            if (market_type == ALL or record.market_type == market_type)
            and (period == ALL or record.period == period)
        ]

    def build(
        self,
        event_id: str,
        provider_quote_lists: Iterable[Iterable[OddsQuote]],
        *,
        home_team: str = "",
        away_team: str = "",
        market_type: str = ALL,
        period: str = ALL,
        sport_id: int | None = None,
        lineups: Iterable[dict[str, Any]] | None = None,
        synthesize_props: bool | None = None,
    ) -> list[AggregatedOdds]:
        """Aggregate, add synthetic player props when requested, then filter."""
        records = self.aggregate(event_id, provider_quote_lists, home_team=home_team, away_team=away_team)
        if synthesize_props is None:
            synthesize_props = market_type in (ALL, MarketType.player_props.value)
        if synthesize_props:
            records.extend(self.synthesize_player_props(event_id, sport_id, lineups))
        return self.select(records, market_type=market_type, period=period)


def contributing_providers(records: Iterable[AggregatedOdds]) -> list[str]:
    seen: list[str] = []
    for record in records:
        sources = record.providers if record.source == "provider" else [record.source]
        for name in sources:
            if name not in seen:
                seen.append(name)
    return seen


class OddsService:
    def __init__(
        self,
        repository: MatchRepository | None = None,
        providers: list[BaseOddsProvider] | None = None,
        aggregator: OddsAggregator | None = None,
    ):
        self.repo = repository or MatchRepository()
        self.providers = providers if providers is not None else [
            pinnacle_provider,
            odds_feed_provider,
            api_football_provider,
        ]
        self.aggregator = aggregator or OddsAggregator()

    @staticmethod
    def validate_request(match_id: Any, sport_id: Any, period: Any, market_type: Any) -> tuple[str, int, str, str]:
        match_id = str(match_id or "").strip()
        if not match_id:
            raise InputValidationError("match_id is required")
        try:
            sport_id = int(sport_id)
        except (TypeError, ValueError):
            raise InputValidationError("sport_id is required") from None
        if sport_id <= 0:
            raise InputValidationError("sport_id must be a positive integer")
        period = str(period or ALL).strip()
        market_type = str(market_type or MarketType.money_line.value).strip().lower()
        if market_type not in REQUESTABLE_MARKETS:
            raise InputValidationError(
                f"market_type must be one of: {', '.join(sorted(REQUESTABLE_MARKETS))}"
            )
        return match_id, sport_id, period, market_type

    async def _fetch(self, provider: BaseOddsProvider, call: str, match: dict[str, Any]) -> list[Any]:
        """Run one provider call under the provider timeout; failures yield []."""
        try:
            return await asyncio.wait_for(
                getattr(provider, call)(match),
                timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            METRIC_PROVIDER_FAILURES.labels(provider=provider.name, reason="timeout").inc()
            logger.warning("Provider %s timed out on %s for match %s", provider.name, call, match.get("event_id"))
        except UpstreamUnavailable as exc:
            METRIC_PROVIDER_FAILURES.labels(provider=provider.name, reason="unavailable").inc()
            logger.warning("Provider %s unavailable on %s for match %s: %s", provider.name, call, match.get("event_id"), exc)
        except Exception:
            METRIC_PROVIDER_FAILURES.labels(provider=provider.name, reason="error").inc()
            logger.exception("Provider %s failed on %s for match %s", provider.name, call, match.get("event_id"))
        return []

    async def fetch_provider_quotes(self, match: dict[str, Any]) -> list[list[OddsQuote]]:
        active = [p for p in self.providers if p.enabled]
        results = await asyncio.gather(*(self._fetch(p, "get_match_quotes", match) for p in active))
        for provider, quotes in zip(active, results):
            logger.debug("Provider %s returned %d quotes for match %s", provider.name, len(quotes), match.get("event_id"))
        return list(results)

    async def fetch_lineups(self, match: dict[str, Any]) -> list[dict[str, Any]]:
        for provider in self.providers:
            if not provider.enabled:
                continue
            lineups = await self._fetch(provider, "get_lineups", match)
            if lineups:
                return lineups
        return []

    async def _load_match(self, match_id: str) -> dict[str, Any] | None:
        try:
            return await asyncio.wait_for(
                self.repo.get_match(match_id),
                timeout=settings.FEED_STORE_TIMEOUT_SECONDS,
            )
        except (asyncio.TimeoutError, PyMongoError) as exc:
            logger.error("Match lookup failed for odds match_id=%s: %s", match_id, exc)
            raise ServiceUnavailable() from exc

    async def get_match_odds(
        self,
        match_id: str,
        sport_id: int,
        period: str = ALL,
        market_type: str = MarketType.money_line.value,
    ) -> MatchOddsResponse:
        match_id, sport_id, period, market_type = self.validate_request(match_id, sport_id, period, market_type)
        with observe_latency(METRIC_ODDS_LATENCY):
            match = await self._load_match(match_id)
            if match is None:
                return MatchOddsResponse(match_id=match_id, market_type=market_type, period=period)
            match = {**match, "sport_id": sport_id}

            wants_props = market_type in (ALL, MarketType.player_props.value)
            if wants_props:
                quote_lists, lineups = await asyncio.gather(
                    self.fetch_provider_quotes(match),
                    self.fetch_lineups(match),
                )
            else:
                quote_lists, lineups = await self.fetch_provider_quotes(match), []

            records = self.aggregator.build(
                match_id,
                quote_lists,
                home_team=str(match.get("home_team") or ""),
                away_team=str(match.get("away_team") or ""),
                market_type=market_type,
                period=period,
                sport_id=sport_id,
                lineups=lineups,
            )
        logger.info(
            "Aggregated odds match_id=%s market_type=%s period=%s quotes=%d records=%d",
            match_id,
            market_type,
            period,
            sum(len(q) for q in quote_lists),
            len(records),
        )
        return MatchOddsResponse(
            match_id=match_id,
            market_type=market_type,
            period=period,
            odds=records,
            total_count=len(records),
            showing_count=len(records),
            providers=contributing_providers(records),
        )

    async def aggregate_for_cache(self, match: dict[str, Any]) -> list[AggregatedOdds]:
        """Provider-sourced odds only, all markets and periods (refresh worker)."""
        quote_lists = await self.fetch_provider_quotes(match)
        return self.aggregator.build(
            str(match.get("event_id")),
            quote_lists,
            home_team=str(match.get("home_team") or ""),
            away_team=str(match.get("away_team") or ""),
            synthesize_props=False,
        )


odds_service = OddsService()
