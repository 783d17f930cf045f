"""
backend/matchboard/database.py

Purpose:
    MongoDB connection bootstrap and index management for the match store,
    the shared feed cache, and the refresh job queue.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - matchboard.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, OperationFailure

from matchboard.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("matchboard.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
        serverSelectionTimeoutMS=int(settings.FEED_STORE_TIMEOUT_SECONDS * 1000),
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def get_db() -> AsyncIOMotorDatabase:
    return db


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Matches (authoritative store) ----

    try:
        await db.matches.create_index("event_id", unique=True)
    except (DuplicateKeyError, OperationFailure) as exc:
        logger.warning("Skipped unique event_id index due to duplicate data: %s", exc)
        await db.matches.create_index("event_id", name="event_id_lookup")
    await db.matches.create_index([("sport_id", 1), ("league_id", 1), ("live_status", 1)])
    await db.matches.create_index([("sport_id", 1), ("start_time", 1)])
    await db.matches.create_index([("last_updated", 1)])

    # ---- Feed cache (fast/stale match lists, odds, cooldown claims) ----

    await db.feed_cache.create_index("expires_at")
    await db.feed_cache.create_index("kind")
    # Expired entries stay readable as stale data for a day before Mongo reaps them.
    await db.feed_cache.create_index(
        "purge_at", expireAfterSeconds=0, name="feed_cache_purge_ttl"
    )

    # ---- Refresh queue ----

    await db.refresh_jobs.create_index([("status", 1), ("created_at", 1)])
    await db.refresh_jobs.create_index(
        [("task", 1), ("sport_id", 1), ("match_type", 1)],
        unique=True,
        partialFilterExpression={"status": "queued"},
        name="refresh_jobs_queued_coalesce",
    )
    await db.refresh_jobs.create_index(
        "finished_at", expireAfterSeconds=60 * 60 * 24, name="refresh_jobs_finished_ttl"
    )

    await db.failed_jobs.create_index([("failed_at", -1)])
    await db.failed_jobs.create_index(
        "failed_at", expireAfterSeconds=60 * 60 * 24 * 7, name="failed_jobs_ttl"
    )
