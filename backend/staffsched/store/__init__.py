"""Entity store backends."""

from ..core.config import Settings
from .base import SCHEDULES, STAFF, TASKS, WEEKLY_CLAIMS, EntityStore
from .memory import InMemoryStore
from .query import Between, Eq, In, Query, Search

__all__ = [
    "Between",
    "EntityStore",
    "Eq",
    "In",
    "InMemoryStore",
    "Query",
    "SCHEDULES",
    "STAFF",
    "Search",
    "TASKS",
    "WEEKLY_CLAIMS",
    "build_store",
]


def build_store(settings: Settings) -> EntityStore:
    """Return the store selected by ``STORE_BACKEND``."""
    if settings.STORE_BACKEND == "mongo":
        from .mongo import MongoStore

        return MongoStore.from_settings(settings)
    return InMemoryStore()
