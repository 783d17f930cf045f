"""
backend/matchboard/services/event_handlers/match_handlers.py

Purpose:
    Subscriber logic for match-domain events. A finish suggestion from the read
    path becomes a guarded status transition in the store; repeated or
    concurrent suggestions for the same match are no-ops.

Dependencies:
    - matchboard.services.event_models
    - matchboard.services.match_repository
"""

from __future__ import annotations

import logging

from matchboard.services.event_models import BaseEvent
from matchboard.services.match_repository import match_repository

logger = logging.getLogger("matchboard.event_handlers.match")


async def handle_match_finish_suggested(event: BaseEvent) -> None:
    match_id = str(getattr(event, "match_id", "") or "")
    if not match_id:
        return
    elapsed_hours = getattr(event, "elapsed_hours", None)
    changed = await match_repository.mark_finished(match_id, reason="max_duration_exceeded")
    if changed:
        logger.info(
            "Marked match finished match_id=%s elapsed_hours=%s correlation_id=%s",
            match_id,
            elapsed_hours,
            event.correlation_id,
        )
    else:
        logger.debug("Match already terminal match_id=%s", match_id)
