"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import path for the backend package and an
    in-memory stand-in for the Motor collections the services touch.
"""

from __future__ import annotations

import copy
import itertools
import re
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from pymongo.errors import DuplicateKeyError

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]

if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

_MISSING = object()
_ids = itertools.count(1)


def _get(doc: dict, key: str) -> Any:
    current: Any = doc
    for part in key.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _compare(value: Any, op: str, arg: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if op == "$lt":
        return value < arg
    if op == "$lte":
        return value <= arg
    if op == "$gt":
        return value > arg
    return value >= arg


def _matches_condition(value: Any, cond: Any) -> bool:
    if isinstance(cond, dict) and cond and all(str(k).startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$in":
                values = value if isinstance(value, list) else [value]
                if not any(v in arg for v in values):
                    return False
            elif op == "$nin":
                values = value if isinstance(value, list) else [value]
                if any(v in arg for v in values):
                    return False
            elif op in ("$lt", "$lte", "$gt", "$gte"):
                if not _compare(value, op, arg):
                    return False
            elif op == "$regex":
                if not isinstance(value, str) or not re.search(arg, value):
                    return False
            elif op == "$ne":
                if value == arg:
                    return False
            else:
                raise NotImplementedError(op)
        return True
    if cond is None:
        return value is _MISSING or value is None
    if isinstance(value, list) and not isinstance(cond, list):
        return cond in value
    return value == cond


def matches_query(doc: dict, query: dict) -> bool:
    for key, cond in query.items():
        if key == "$or":
            if not any(matches_query(doc, sub) for sub in cond):
                return False
            continue
        if not _matches_condition(_get(doc, key), cond):
            return False
    return True


def _apply_update(doc: dict, update: dict, *, inserting: bool) -> None:
    for key, value in update.get("$set", {}).items():
        doc[key] = copy.deepcopy(value)
    if inserting:
        for key, value in update.get("$setOnInsert", {}).items():
            doc[key] = copy.deepcopy(value)
    for key, value in update.get("$inc", {}).items():
        doc[key] = doc.get(key, 0) + value
    for key, value in update.get("$addToSet", {}).items():
        items = value["$each"] if isinstance(value, dict) and "$each" in value else [value]
        current = doc.setdefault(key, [])
        for item in items:
            if item not in current:
                current.append(item)


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs
        self._limit: int | None = None

    def sort(self, key, direction: int = 1):
        keys = key if isinstance(key, list) else [(key, direction)]
        for field, order in reversed(keys):
            self._docs.sort(key=lambda d: (_get(d, field) is _MISSING, _get(d, field)), reverse=order < 0)
        return self

    def limit(self, n: int):
        self._limit = int(n)
        return self

    async def to_list(self, length: int | None = None):
        docs = self._docs
        for cap in (self._limit, length):
            if cap:
                docs = docs[:cap]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    def __init__(self, docs: list[dict] | None = None):
        self.docs: list[dict] = [copy.deepcopy(d) for d in (docs or [])]
        self.fail_with: Exception | None = None
        self.calls: list[tuple[str, Any]] = []

    def _check(self, name: str, payload: Any) -> None:
        self.calls.append((name, payload))
        if self.fail_with is not None:
            raise self.fail_with

    def find(self, query: dict | None = None, projection: dict | None = None):
        self._check("find", query)
        return FakeCursor([d for d in self.docs if matches_query(d, query or {})])

    async def find_one(self, query: dict | None = None, projection: dict | None = None):
        self._check("find_one", query)
        for doc in self.docs:
            if matches_query(doc, query or {}):
                return copy.deepcopy(doc)
        return None

    async def count_documents(self, query: dict):
        self._check("count_documents", query)
        return sum(1 for d in self.docs if matches_query(d, query))

    async def distinct(self, key: str, query: dict | None = None):
        self._check("distinct", query)
        seen: list[Any] = []
        for doc in self.docs:
            if matches_query(doc, query or {}):
                value = _get(doc, key)
                if value is not _MISSING and value not in seen:
                    seen.append(value)
        return seen

    async def insert_one(self, doc: dict):
        self._check("insert_one", doc)
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", next(_ids))
        if any(d.get("_id") == doc["_id"] for d in self.docs):
            raise DuplicateKeyError("E11000 duplicate key error")
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query: dict, update: dict, upsert: bool = False):
        self._check("update_one", query)
        for doc in self.docs:
            if matches_query(doc, query):
                before = copy.deepcopy(doc)
                _apply_update(doc, update, inserting=False)
                return SimpleNamespace(matched_count=1, modified_count=int(before != doc), upserted_id=None)
        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
        doc = {k: copy.deepcopy(v) for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
        doc.setdefault("_id", next(_ids))
        if any(d.get("_id") == doc["_id"] for d in self.docs):
            raise DuplicateKeyError("E11000 duplicate key error")
        _apply_update(doc, update, inserting=True)
        self.docs.append(doc)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])

    async def delete_one(self, query: dict):
        self._check("delete_one", query)
        for idx, doc in enumerate(self.docs):
            if matches_query(doc, query):
                del self.docs[idx]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def find_one_and_update(self, query: dict, update: dict, sort=None, return_document=None, **_kwargs):
        self._check("find_one_and_update", query)
        candidates = [d for d in self.docs if matches_query(d, query)]
        if sort:
            for field, order in reversed(sort):
                candidates.sort(key=lambda d: _get(d, field), reverse=order < 0)
        if not candidates:
            return None
        _apply_update(candidates[0], update, inserting=False)
        return copy.deepcopy(candidates[0])


class FakeDb:
    def __init__(self):
        self.matches = FakeCollection()
        self.feed_cache = FakeCollection()
        self.refresh_jobs = FakeCollection()
        self.failed_jobs = FakeCollection()
        self.ping_error: Exception | None = None

    async def command(self, name: str):
        if self.ping_error is not None:
            raise self.ping_error
        return {"ok": 1.0}


@pytest.fixture
def fake_db(monkeypatch):
    import matchboard.database as _db

    db = FakeDb()
    monkeypatch.setattr(_db, "db", db, raising=False)
    return db
