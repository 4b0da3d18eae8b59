"""MongoDB-backed entity store.

Documents keep their ``id`` in Mongo's ``_id``. Unique indexes back the
duplicate-key semantics of ``insert`` and the ``version`` field backs the
compare-and-set of ``save``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo import errors as mongo_errors
from pymongo.database import Database

from ..core.config import Settings
from ..core.errors import ConcurrencyError, DuplicateKeyError
from .base import SCHEDULES, UNIQUE_FIELDS
from .query import Between, Eq, In, Predicate, Query, Search

logger = logging.getLogger(__name__)


def predicate_to_mongo(predicate: Predicate) -> dict[str, Any]:
    if isinstance(predicate, Eq):
        return {predicate.field: predicate.value}
    if isinstance(predicate, In):
        return {predicate.field: {"$in": list(predicate.values)}}
    if isinstance(predicate, Between):
        bounds: dict[str, Any] = {}
        if predicate.start is not None:
            bounds["$gte"] = predicate.start
        if predicate.end is not None:
            bounds["$lte" if predicate.end_inclusive else "$lt"] = predicate.end
        return {predicate.field: bounds}
    if isinstance(predicate, Search):
        pattern = re.escape(predicate.text)
        return {
            "$or": [
                {name: {"$regex": pattern, "$options": "i"}} for name in predicate.fields
            ]
        }
    raise TypeError(f"unsupported predicate {predicate!r}")


def to_mongo_filter(query: Query | None) -> dict[str, Any]:
    """Translate a :class:`Query` into a Mongo filter document."""
    if query is None or not query.filters:
        return {}
    clauses = [predicate_to_mongo(p) for p in query.filters]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _to_mongo(doc: dict[str, Any]) -> dict[str, Any]:
    payload = dict(doc)
    payload["_id"] = payload.pop("id")
    return payload


def _from_mongo(doc: dict[str, Any] | None) -> dict[str, Any] | None:
    if doc is None:
        return None
    payload = dict(doc)
    payload["id"] = payload.pop("_id")
    return payload


class MongoStore:
    """Entity store over a pymongo ``Database``."""

    def __init__(self, db: Database) -> None:
        self.db = db

    @classmethod
    def from_settings(cls, settings: Settings) -> "MongoStore":
        client: MongoClient = MongoClient(settings.DATABASE_URL, tz_aware=True)
        store = cls(client[settings.DATABASE_NAME])
        store.ensure_indexes()
        return store

    def ensure_indexes(self) -> None:
        for collection, fields in UNIQUE_FIELDS.items():
            for name in fields:
                self.db[collection].create_index([(name, ASCENDING)], unique=True)
        schedules = self.db[SCHEDULES]
        schedules.create_index(
            [("schedule_type", ASCENDING), ("scheduled_date", ASCENDING), ("status", ASCENDING)]
        )
        schedules.create_index([("assignments.staff_id", ASCENDING), ("scheduled_date", ASCENDING)])
        logger.info("mongo indexes ensured", extra={"database": self.db.name})

    def find_by_id(self, collection: str, id: str) -> dict[str, Any] | None:
        return _from_mongo(self.db[collection].find_one({"_id": id}))

    def find(self, collection: str, query: Query | None = None) -> list[dict[str, Any]]:
        cursor = self.db[collection].find(to_mongo_filter(query))
        if query is not None and query.sort:
            cursor = cursor.sort(
                [(name, DESCENDING if desc else ASCENDING) for name, desc in query.sort]
            )
        if query is not None and query.limit is not None:
            cursor = cursor.limit(query.limit)
        return [_from_mongo(doc) for doc in cursor]

    def count(self, collection: str, query: Query | None = None) -> int:
        return self.db[collection].count_documents(to_mongo_filter(query))

    def insert(self, collection: str, doc: dict[str, Any]) -> dict[str, Any]:
        payload = _to_mongo(doc)
        payload["version"] = 1
        try:
            self.db[collection].insert_one(payload)
        except mongo_errors.DuplicateKeyError as exc:
            raise DuplicateKeyError(
                f"{collection} rejected duplicate key for {doc['id']}",
                {"collection": collection, "key": str((exc.details or {}).get("keyPattern"))},
            ) from exc
        return _from_mongo(payload)

    def save(
        self,
        collection: str,
        doc: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        payload = _to_mongo(doc)
        coll = self.db[collection]
        try:
            if expected_version is None:
                current = coll.find_one({"_id": payload["_id"]}, {"version": 1})
                payload["version"] = (current or {}).get("version", 0) + 1
                coll.replace_one({"_id": payload["_id"]}, payload, upsert=True)
            else:
                payload["version"] = expected_version + 1
                result = coll.replace_one(
                    {"_id": payload["_id"], "version": expected_version}, payload
                )
                if result.matched_count == 0:
                    raise ConcurrencyError(
                        f"{collection}/{doc['id']} moved past version {expected_version}",
                        {"collection": collection, "id": doc["id"]},
                    )
        except mongo_errors.DuplicateKeyError as exc:
            raise DuplicateKeyError(
                f"{collection} rejected duplicate key for {doc['id']}",
                {"collection": collection},
            ) from exc
        return _from_mongo(payload)

    def delete_by_id(self, collection: str, id: str) -> bool:
        return self.db[collection].delete_one({"_id": id}).deleted_count > 0
