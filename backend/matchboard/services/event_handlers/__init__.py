"""
backend/matchboard/services/event_handlers/__init__.py

Purpose:
    Central registration entrypoint for event bus subscribers.

Dependencies:
    - matchboard.services.event_bus
    - matchboard.services.event_handlers.match_handlers
"""

from __future__ import annotations

from matchboard.config import settings
from matchboard.services.event_bus import InMemoryEventBus
from matchboard.services.event_handlers.match_handlers import handle_match_finish_suggested


def register_event_handlers(bus: InMemoryEventBus) -> None:
    if settings.EVENT_HANDLER_MATCH_FINISH_ENABLED:
        bus.subscribe(
            "match.finish_suggested",
            handle_match_finish_suggested,
            handler_name="match_finish_suggested",
            concurrency=1,
        )
