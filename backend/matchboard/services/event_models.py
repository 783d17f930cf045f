"""
backend/matchboard/services/event_models.py

Purpose:
    Domain event contracts for in-process reactive workflows. The read path
    publishes suggestions; subscribers own the writes.

Dependencies:
    - pydantic
    - matchboard.utils
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from matchboard.utils import ensure_utc, utcnow

EventType = Literal["match.finish_suggested"]


def make_event_id() -> str:
    return str(uuid.uuid4())


def make_correlation_id() -> str:
    return str(uuid.uuid4())


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=make_event_id)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    correlation_id: str = Field(default_factory=make_correlation_id)
    source: str


class MatchFinishSuggestedEvent(BaseEvent):
    event_type: Literal["match.finish_suggested"] = "match.finish_suggested"
    match_id: str
    sport_id: int
    start_time: datetime
    elapsed_hours: float


def normalize_event_time(event: BaseEvent) -> BaseEvent:
    event.occurred_at = ensure_utc(event.occurred_at)
    return event
