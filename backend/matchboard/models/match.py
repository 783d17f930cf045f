from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class LiveStatus(IntEnum):
    """Lifecycle status as stored on a match document (``live_status``)."""
    cancelled = -1
    scheduled = 0
    live = 1
    finished = 2


TERMINAL_STATUSES = frozenset({LiveStatus.finished, LiveStatus.cancelled})


class MatchType(str, Enum):
    live = "live"
    prematch = "prematch"
    all = "all"
    available_for_betting = "available_for_betting"


# ---------------------------------------------------------------------------
# API response models
# ---------------------------------------------------------------------------


class MatchScore(BaseModel):
    home: Optional[int] = None
    away: Optional[int] = None


class MatchFeedItem(BaseModel):
    """One match as returned by GET /api/matches."""
    id: str
    sport_id: int
    home_team: str
    away_team: str
    home_team_id: Optional[int] = None
    away_team_id: Optional[int] = None
    league_id: int
    league_name: str = ""
    scheduled_time: str = "TBD"
    start_time: Optional[datetime] = None
    match_type: str
    betting_availability: str
    live_status_id: int
    has_open_markets: bool = False
    score: MatchScore = MatchScore()
    duration: Optional[str] = None
    last_updated: Optional[datetime] = None
    odds_count: int = 0


class MatchFeedResponse(BaseModel):
    success: bool = True
    data: List[MatchFeedItem] = []
    total_count: int = 0
    sport_id: int
    match_type: str
    league_ids: List[int] = []
    timezone: str = "UTC"
    data_source: str
    cache_status: str
    message: Optional[str] = None
    system_status: Optional[str] = None
    warnings: List[str] = []


class RefreshRequest(BaseModel):
    sport_id: int
    match_type: MatchType = MatchType.all


class RefreshResponse(BaseModel):
    success: bool = True
    sport_id: int
    match_type: str
    tasks: List[str] = []


class HealthResponse(BaseModel):
    status: str
    healthy: bool
    degraded: bool
    warnings: List[str] = []
    checks: Dict[str, Any] = {}
