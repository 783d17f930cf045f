"""
backend/matchboard/config.py

Purpose:
    Central settings loading for the match feed backend.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "matchboard"
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Sport ids as issued by the upstream feed
    SOCCER_SPORT_ID: int = 1
    BASKETBALL_SPORT_ID: int = 3

    # Visibility classifier: max plausible match duration per sport_id (hours).
    # Matches older than this with no live signal are suggested as finished.
    MATCH_MAX_DURATION_HOURS: dict[int, float] = {1: 3.0}
    MATCH_DEFAULT_MAX_DURATION_HOURS: float = 4.0
    PREMATCH_HORIZON_DAYS: int = 2

    # Read cascade: client Cache-Control max-age per tier
    FEED_DATABASE_MAX_AGE_SECONDS: int = 30
    FEED_CACHE_MAX_AGE_SECONDS: int = 10
    FEED_EMPTY_MAX_AGE_SECONDS: int = 5
    FEED_RESCUE_MAX_AGE_SECONDS: int = 30
    FEED_STORE_QUERY_LIMIT: int = 500
    FEED_STORE_LOOKBACK_HOURS: int = 24
    FEED_STORE_TIMEOUT_SECONDS: float = 5.0
    FEED_CACHE_TIMEOUT_SECONDS: float = 2.0

    # Shared cache entries written by the refresh worker
    FEED_FAST_CACHE_TTL_SECONDS: int = 120
    FEED_STALE_CACHE_TTL_SECONDS: int = 6 * 60 * 60
    ODDS_CACHE_TTL_SECONDS: int = 300

    # Background refresh policy
    FEED_REFRESH_STALE_AFTER_MINUTES: int = 30
    FEED_REFRESH_COOLDOWN_SECONDS: int = 300
    FEED_REFRESHER_TICK_SECONDS: int = 15
    FEED_REFRESHER_BATCH_SIZE: int = 10
    ODDS_SYNC_MATCH_LIMIT: int = 50

    # Odds providers
    PROVIDER_TIMEOUT_SECONDS: float = 8.0
    PROVIDER_MAX_RETRIES: int = 1
    PROVIDER_RETRY_BASE_DELAY_SECONDS: float = 0.5
    PROVIDER_CIRCUIT_FAILURE_THRESHOLD: int = 3
    PROVIDER_CIRCUIT_RECOVERY_SECONDS: int = 120
    PINNACLE_ENABLED: bool = True
    PINNACLE_API_KEY: str = ""
    PINNACLE_BASE_URL: str = "https://pinnacle-odds.p.rapidapi.com/kit/v1"
    PINNACLE_RAPIDAPI_HOST: str = "pinnacle-odds.p.rapidapi.com"
    ODDS_FEED_ENABLED: bool = False
    ODDS_FEED_API_KEY: str = ""
    ODDS_FEED_BASE_URL: str = "https://api.oddsfeed.com/v1"
    API_FOOTBALL_ENABLED: bool = True
    API_FOOTBALL_API_KEY: str = ""
    API_FOOTBALL_BASE_URLS: dict[int, str] = {
        1: "https://v3.football.api-sports.io",
        3: "https://v1.basketball.api-sports.io",
        4: "https://v1.american-football.api-sports.io",
        5: "https://v1.hockey.api-sports.io",
        6: "https://v1.baseball.api-sports.io",
    }
    PLAYER_PROPS_MAX_PLAYERS: int = 8

    # Health monitor thresholds
    HEALTH_CHECK_TIMEOUT_SECONDS: float = 2.0
    HEALTH_FAILED_JOBS_WINDOW_MINUTES: int = 60
    HEALTH_FAILED_JOBS_MAX: int = 5
    HEALTH_STALE_AFTER_HOURS: int = 6
    HEALTH_STALE_RATIO_MAX: float = 0.8

    # Event bus (in-process)
    EVENT_BUS_ENABLED: bool = True
    EVENT_BUS_INGRESS_QUEUE_MAXSIZE: int = 10000
    EVENT_BUS_HANDLER_QUEUE_MAXSIZE: int = 2000
    EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY: int = 1
    EVENT_BUS_ERROR_BUFFER_SIZE: int = 200
    EVENT_HANDLER_MATCH_FINISH_ENABLED: bool = True

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
