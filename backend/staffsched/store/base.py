"""Entity store contract shared by the in-memory and MongoDB backends."""

from __future__ import annotations

from typing import Any, Protocol

from .query import Query

STAFF = "staff"
TASKS = "tasks"
SCHEDULES = "schedules"
WEEKLY_CLAIMS = "weekly_claims"

# Fields (besides ``id``) that must be unique within a collection.
UNIQUE_FIELDS: dict[str, tuple[str, ...]] = {
    SCHEDULES: ("schedule_id",),
}


class EntityStore(Protocol):
    """Document store keyed by ``id``.

    ``insert`` is the atomic conditional write: it raises
    ``DuplicateKeyError`` when the id (or a unique field) is taken.
    ``save`` replaces the whole document and bumps ``version``; with
    ``expected_version`` it raises ``ConcurrencyError`` if the stored
    version differs.
    """

    def find_by_id(self, collection: str, id: str) -> dict[str, Any] | None: ...

    def find(self, collection: str, query: Query | None = None) -> list[dict[str, Any]]: ...

    def count(self, collection: str, query: Query | None = None) -> int: ...

    def insert(self, collection: str, doc: dict[str, Any]) -> dict[str, Any]: ...

    def save(
        self,
        collection: str,
        doc: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]: ...

    def delete_by_id(self, collection: str, id: str) -> bool: ...
