"""Process-local entity store used for development and tests."""

from __future__ import annotations

import copy
import threading
from collections import defaultdict
from typing import Any, Iterable

from ..core.errors import ConcurrencyError, DuplicateKeyError
from .base import UNIQUE_FIELDS
from .query import Query, matches


def _sort_key(field: str):
    def key(doc: dict[str, Any]):
        value = doc.get(field)
        return (value is None, value if value is not None else 0)

    return key


class InMemoryStore:
    """Dict-backed store with the same write semantics as the Mongo backend."""

    def __init__(self, unique_fields: dict[str, tuple[str, ...]] | None = None) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._unique = UNIQUE_FIELDS if unique_fields is None else unique_fields
        self._lock = threading.RLock()

    def find_by_id(self, collection: str, id: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self._collections[collection].get(id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, collection: str, query: Query | None = None) -> list[dict[str, Any]]:
        query = query or Query()
        with self._lock:
            docs = [
                copy.deepcopy(doc)
                for doc in self._collections[collection].values()
                if all(matches(doc, p) for p in query.filters)
            ]
        for field, descending in reversed(query.sort):
            docs.sort(key=_sort_key(field), reverse=descending)
        if query.limit is not None:
            docs = docs[: query.limit]
        return docs

    def count(self, collection: str, query: Query | None = None) -> int:
        return len(self.find(collection, Query(filters=query.filters) if query else None))

    def insert(self, collection: str, doc: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            docs = self._collections[collection]
            if doc["id"] in docs:
                raise DuplicateKeyError(
                    f"{collection} already contains id {doc['id']}",
                    {"collection": collection, "key": "id"},
                )
            self._check_unique(collection, doc, docs.values())
            stored = copy.deepcopy(doc)
            stored["version"] = 1
            docs[doc["id"]] = stored
            return copy.deepcopy(stored)

    def save(
        self,
        collection: str,
        doc: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            docs = self._collections[collection]
            current = docs.get(doc["id"])
            current_version = current.get("version", 0) if current else 0
            if expected_version is not None and current_version != expected_version:
                raise ConcurrencyError(
                    f"{collection}/{doc['id']} is at version {current_version}, "
                    f"expected {expected_version}",
                    {"collection": collection, "id": doc["id"]},
                )
            others = (d for key, d in docs.items() if key != doc["id"])
            self._check_unique(collection, doc, others)
            stored = copy.deepcopy(doc)
            stored["version"] = current_version + 1
            docs[doc["id"]] = stored
            return copy.deepcopy(stored)

    def delete_by_id(self, collection: str, id: str) -> bool:
        with self._lock:
            return self._collections[collection].pop(id, None) is not None

    def _check_unique(
        self, collection: str, doc: dict[str, Any], others: Iterable[dict[str, Any]]
    ) -> None:
        fields = self._unique.get(collection, ())
        if not fields:
            return
        for other in others:
            for name in fields:
                if doc.get(name) is not None and other.get(name) == doc.get(name):
                    raise DuplicateKeyError(
                        f"{collection}.{name} {doc[name]!r} already exists",
                        {"collection": collection, "key": name},
                    )
