from abc import ABC, abstractmethod
from typing import Any

from matchboard.models.odds import OddsQuote


class BaseOddsProvider(ABC):
    """Abstract base class for odds data providers.

    Implementations translate one upstream's native payload into OddsQuote
    rows. They raise UpstreamUnavailable on transport or HTTP failures and
    leave market normalization and deduplication to the aggregator.
    """

    name: str = ""

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def get_match_quotes(self, match: dict[str, Any]) -> list[OddsQuote]:
        """Fetch quotes relevant to one match.

        ``match`` is the stored match document (event_id, sport_id, team names,
        live_status, api_football_fixture_id, ...). Quotes carry ``event_id``
        when the upstream payload identifies the event.
        """
        ...

    async def get_lineups(self, match: dict[str, Any]) -> list[dict[str, Any]]:
        """Team lineups (``startXI[].player.name``) when the provider has them."""
        return []

    @abstractmethod
    async def aclose(self) -> None:
        ...


def to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def first_present(row: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None
