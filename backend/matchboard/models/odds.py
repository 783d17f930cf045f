from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MarketType(str, Enum):
    money_line = "money_line"
    totals = "totals"
    spreads = "spreads"
    player_props = "player_props"
    unknown = "unknown"


STANDARD_MARKETS = frozenset({MarketType.money_line, MarketType.totals, MarketType.spreads})


class OddsQuote(BaseModel):
    """A single provider quote before normalization.

    ``market_type`` holds the provider's raw market name; ``bet_type`` its
    raw code, when the provider has one.
    """
    market_type: str
    bet_type: Optional[str] = None
    selection: str
    line: Optional[float] = None
    price: Optional[float] = None
    period: str = "Game"
    status: str = "open"
    provider: str
    event_id: Optional[str] = None


class AggregatedOdds(BaseModel):
    """One canonical odds record after cross-provider deduplication."""
    market_type: str
    selection: str
    line: Optional[float] = None
    price: float
    period: str = "Game"
    status: str = "open"
    bet: str = ""
    providers: List[str] = Field(default_factory=list)
    source: str = "provider"


class MatchOddsResponse(BaseModel):
    match_id: str
    market_type: str = "all"
    period: str = "all"
    odds: List[AggregatedOdds] = []
    total_count: int = 0
    showing_count: int = 0
    providers: List[str] = []
