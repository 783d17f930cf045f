"""
backend/matchboard/services/market_normalizer.py

Purpose:
    Map heterogeneous provider market names, bet codes, selections, lines and
    prices onto the canonical vocabulary used by the odds aggregator. Pure
    functions, no I/O.

Dependencies:
    - matchboard.models.odds
"""

from __future__ import annotations

import math
import re

from matchboard.models.odds import MarketType

# Explicit provider bet codes short-circuit the keyword scan.
_BET_TYPE_CODES: dict[str, MarketType] = {
    "1x2": MarketType.money_line,
    "match_winner": MarketType.money_line,
    "money_line": MarketType.money_line,
    "moneyline": MarketType.money_line,
    "over_under": MarketType.totals,
    "total": MarketType.totals,
    "totals": MarketType.totals,
    "handicap": MarketType.spreads,
    "spread": MarketType.spreads,
    "spreads": MarketType.spreads,
    "asian_handicap": MarketType.spreads,
    "player_props": MarketType.player_props,
    "player_proposition": MarketType.player_props,
}

# Scanned in order; first table with a matching keyword wins.
_NAME_KEYWORDS: tuple[tuple[MarketType, tuple[str, ...]], ...] = (
    (
        MarketType.money_line,
        ("1x2", "match winner", "match result", "money line", "moneyline", "winner", "outright", "to win"),
    ),
    (MarketType.totals, ("over/under", "total", "points total")),
    (MarketType.spreads, ("handicap", "spread", "asian", "line")),
)

_SELECTION_ALIASES: dict[str, str] = {
    "home": "home",
    "1": "home",
    "home team": "home",
    "away": "away",
    "2": "away",
    "away team": "away",
    "draw": "draw",
    "x": "draw",
    "tie": "draw",
    "over": "over",
    "under": "under",
}

_LINE_RE = re.compile(r"([+-]?\d+(?:\.\d+)?)")


def normalize_market_type(raw_market_name: str | None, raw_bet_type: str | None = None) -> str:
    """Return the canonical market type, or ``"unknown"`` when nothing matches.

    Player-specific totals ("Player Total Goals") are not treated as match
    totals; they come out as unknown unless the provider tags them with a
    player-props bet code.
    """
    code = (raw_bet_type or "").strip().lower()
    if code in _BET_TYPE_CODES:
        return _BET_TYPE_CODES[code].value

    name = (raw_market_name or "").strip().lower()
    if not name:
        return MarketType.unknown.value
    # Already canonical (e.g. a provider that pre-normalizes).
    if name in _BET_TYPE_CODES:
        return _BET_TYPE_CODES[name].value

    for market, keywords in _NAME_KEYWORDS:
        if market is MarketType.totals and "player" in name:
            continue
        if any(keyword in name for keyword in keywords):
            return market.value
    return MarketType.unknown.value


def normalize_selection(selection: str | None) -> str:
    text = (selection or "").strip().lower()
    if text in _SELECTION_ALIASES:
        return _SELECTION_ALIASES[text]
    # "Over 2.5" / "Under 2.5": the line travels separately.
    head = text.split(" ", 1)[0]
    if head in ("over", "under") and _LINE_RE.search(text):
        return head
    return text


def normalize_line(line: float | str | None) -> float | None:
    if line is None or line == "":
        return None
    try:
        value = float(line)
    except (TypeError, ValueError):
        return None
    return round(value, 2) if math.isfinite(value) else None


def round_price(price: float | str | None) -> float | None:
    """Decimal price rounded to 2 dp; ``None`` when missing, non-finite or below 1.0."""
    if price is None or price == "":
        return None
    try:
        value = round(float(price), 2)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value < 1.0:
        return None
    return value


def extract_line(text: str | None) -> float | None:
    """First signed decimal in a selection label, e.g. ``"Over 2.5"`` -> ``2.5``."""
    if not text:
        return None
    match = _LINE_RE.search(str(text))
    if not match:
        return None
    return float(match.group(1))
