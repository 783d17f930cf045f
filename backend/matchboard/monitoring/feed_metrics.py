"""
backend/matchboard/monitoring/feed_metrics.py

Purpose:
    Prometheus metrics for the match feed read path, background refresh and
    the multi-provider odds pipeline.

Dependencies:
    - prometheus_client
"""

from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import Counter, Histogram

METRIC_FEED_TIER_SERVED = Counter(
    "matchboard_feed_tier_served_total",
    "Match feed responses by the cascade tier that produced them.",
    ["source", "cache_status"],
)
METRIC_FEED_TIER_FAILURES = Counter(
    "matchboard_feed_tier_failures_total",
    "Read cascade tiers that failed or timed out and were skipped.",
    ["tier"],
)
METRIC_RECORDS_EXCLUDED = Counter(
    "matchboard_records_excluded_total",
    "Match records excluded from listings due to inconsistent data.",
    ["reason"],
)
METRIC_FINISH_SUGGESTED = Counter(
    "matchboard_finish_suggested_total",
    "Matches flagged as finished by the visibility classifier.",
    ["sport_id"],
)
METRIC_REFRESH_DISPATCHED = Counter(
    "matchboard_refresh_dispatched_total",
    "Background refresh jobs enqueued.",
    ["task"],
)
METRIC_REFRESH_SUPPRESSED = Counter(
    "matchboard_refresh_suppressed_total",
    "Background refresh requests suppressed by the cooldown claim.",
    ["match_type"],
)
METRIC_REFRESH_JOB_FAILURES = Counter(
    "matchboard_refresh_job_failures_total",
    "Background refresh jobs that raised.",
    ["task"],
)
METRIC_PROVIDER_FAILURES = Counter(
    "matchboard_odds_provider_failures_total",
    "Odds provider fetches that failed or timed out.",
    ["provider", "reason"],
)
METRIC_ODDS_DEDUPLICATED = Counter(
    "matchboard_odds_deduplicated_total",
    "Quotes merged into an existing aggregated record.",
    ["market"],
)
METRIC_ODDS_DROPPED = Counter(
    "matchboard_odds_dropped_total",
    "Quotes dropped before aggregation.",
    ["reason"],
)
METRIC_FEED_LATENCY = Histogram(
    "matchboard_feed_latency_seconds",
    "Latency of one read cascade evaluation.",
)
METRIC_ODDS_LATENCY = Histogram(
    "matchboard_odds_latency_seconds",
    "Latency of one odds aggregation request including provider fan-out.",
)


@contextmanager
def observe_latency(metric):
    start = perf_counter()
    try:
        yield
    finally:
        metric.observe(perf_counter() - start)
