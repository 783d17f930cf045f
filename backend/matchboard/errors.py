"""
backend/matchboard/errors.py

Purpose:
    Error taxonomy shared by the read path, the odds pipeline and the HTTP
    layer. main.py maps these onto status codes.

Dependencies:
    - (none)
"""

from __future__ import annotations


class InputValidationError(ValueError):
    """Malformed request parameters. Surfaced as 400, never recovered."""


class UpstreamUnavailable(Exception):
    """Store, cache or provider failed or timed out. Recovered by cascading."""

    def __init__(self, component: str, detail: str = "") -> None:
        self.component = component
        self.detail = detail
        super().__init__(f"{component} unavailable: {detail}" if detail else f"{component} unavailable")


class DataInconsistency(Exception):
    """A single record is unusable (e.g. unparseable start_time). The record is excluded."""

    def __init__(self, record_id: str | None, reason: str) -> None:
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"record {record_id}: {reason}")


class ServiceUnavailable(Exception):
    """Every tier of the read path failed, including the stale rescue."""

    error = "Service temporarily unavailable"
    message = "Unable to retrieve match data at this time"
