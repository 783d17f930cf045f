"""
backend/matchboard/services/feed_cache_service.py

Purpose:
    Shared cache for match lists, aggregated odds and refresh cooldown claims.
    Backed by MongoDB so every API process and the refresh worker see the same
    entries; the claim is a single atomic upsert.

Dependencies:
    - matchboard.database
    - matchboard.utils
    - pymongo
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Any

from pymongo.errors import DuplicateKeyError

import matchboard.database as _db
from matchboard.utils import ensure_utc, utcnow

_COLLECTION = "feed_cache"
# Expired entries are kept around this long before the TTL index drops them.
_PURGE_GRACE = timedelta(days=1)


def build_matches_cache_key(*, kind: str, sport_id: int, league_id: int, stale: bool = False) -> str:
    suffix = "_matches_stale" if stale else "_matches"
    return f"{kind}{suffix}:{int(sport_id)}:{int(league_id)}"


def build_odds_cache_key(match_id: str) -> str:
    return f"odds:{match_id}"


def build_cooldown_key(*, sport_id: int, match_type: str) -> str:
    return f"refresh_cooldown:{int(sport_id)}:{match_type}"


def _collection():
    return getattr(_db.db, _COLLECTION)


def _is_fresh(doc: dict[str, Any] | None, now) -> bool:
    if not isinstance(doc, dict):
        return False
    expires_at = doc.get("expires_at")
    if expires_at is None:
        return False
    return ensure_utc(expires_at) > now


async def get_cached_payload(cache_key: str) -> Any | None:
    doc = await _collection().find_one({"_id": str(cache_key)})
    if not _is_fresh(doc, utcnow()):
        return None
    return doc.get("payload")


async def get_cached_payloads(cache_keys: list[str]) -> dict[str, Any]:
    """Fetch several keys in one round trip; expired and missing keys are omitted."""
    if not cache_keys:
        return {}
    now = utcnow()
    cursor = _collection().find({"_id": {"$in": [str(k) for k in cache_keys]}})
    docs = await cursor.to_list(length=len(cache_keys))
    return {str(doc["_id"]): doc.get("payload") for doc in docs if _is_fresh(doc, now)}


async def get_cached_payloads_by_prefix(prefix: str, *, limit: int = 500) -> dict[str, Any]:
    """All fresh entries whose key starts with ``prefix`` (anchored, uses the _id index)."""
    now = utcnow()
    cursor = _collection().find({"_id": {"$regex": f"^{re.escape(prefix)}"}})
    docs = await cursor.to_list(length=limit)
    return {str(doc["_id"]): doc.get("payload") for doc in docs if _is_fresh(doc, now)}


async def set_cached_payload(
    *,
    cache_key: str,
    payload: Any,
    ttl_seconds: int,
    kind: str,
) -> None:
    now = utcnow()
    expires_at = now + timedelta(seconds=max(1, int(ttl_seconds)))
    await _collection().update_one(
        {"_id": str(cache_key)},
        {
            "$set": {
                "kind": kind,
                "payload": payload,
                "updated_at": now,
                "expires_at": expires_at,
                "purge_at": expires_at + _PURGE_GRACE,
            },
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )


async def claim_cooldown(cache_key: str, *, ttl_seconds: int) -> bool:
    """Atomically claim a cooldown window. Exactly one concurrent caller wins.

    The filter only matches a missing or expired claim. A live claim makes the
    upsert collide on ``_id``, which is the lost-race signal.
    """
    now = utcnow()
    expires_at = now + timedelta(seconds=max(1, int(ttl_seconds)))
    try:
        result = await _collection().update_one(
            {"_id": str(cache_key), "expires_at": {"$lte": now}},
            {
                "$set": {
                    "kind": "cooldown",
                    "claimed_at": now,
                    "expires_at": expires_at,
                    "purge_at": expires_at + _PURGE_GRACE,
                },
                "$inc": {"claims": 1},
            },
            upsert=True,
        )
    except DuplicateKeyError:
        return False
    return bool(result.modified_count or result.upserted_id is not None)


async def release_cooldown(cache_key: str) -> None:
    await _collection().delete_one({"_id": str(cache_key), "kind": "cooldown"})


async def ping() -> None:
    await _db.db.command("ping")
