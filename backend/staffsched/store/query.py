"""Backend-neutral query predicates for the entity store.

Field names may be dotted (``assignments.staff_id``); when a path crosses a
list every element is visited, so an equality predicate on such a path means
"any element matches", mirroring document-store semantics.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class In:
    field: str
    values: tuple

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))


@dataclass(frozen=True)
class Between:
    """Range check; ``None`` bounds are open. Upper bound inclusivity is explicit."""

    field: str
    start: datetime | None = None
    end: datetime | None = None
    end_inclusive: bool = True


@dataclass(frozen=True)
class Search:
    """Case-insensitive substring match against any of ``fields``."""

    fields: tuple
    text: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


Predicate = Eq | In | Between | Search


@dataclass(frozen=True)
class Query:
    filters: tuple = ()
    sort: tuple = ()  # ((field, descending), ...)
    limit: int | None = None

    @classmethod
    def where(cls, *filters: Predicate, sort: Sequence[tuple[str, bool]] = (), limit: int | None = None) -> "Query":
        return cls(filters=tuple(filters), sort=tuple(sort), limit=limit)


def resolve(doc: Any, path: str) -> list[Any]:
    """Every value reachable at ``path`` in ``doc``, flattening lists."""
    current = [doc]
    for part in path.split("."):
        nxt: list[Any] = []
        for item in current:
            if isinstance(item, list):
                item_values = item
            else:
                item_values = [item]
            for value in item_values:
                if isinstance(value, dict) and part in value:
                    nxt.append(value[part])
        current = nxt
    flat: list[Any] = []
    for item in current:
        if isinstance(item, list):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def matches(doc: dict, predicate: Predicate) -> bool:
    if isinstance(predicate, Eq):
        return predicate.value in resolve(doc, predicate.field)
    if isinstance(predicate, In):
        return any(v in predicate.values for v in resolve(doc, predicate.field))
    if isinstance(predicate, Between):
        for value in resolve(doc, predicate.field):
            if value is None:
                continue
            if predicate.start is not None and value < predicate.start:
                continue
            if predicate.end is not None:
                if predicate.end_inclusive and value > predicate.end:
                    continue
                if not predicate.end_inclusive and value >= predicate.end:
                    continue
            return True
        return False
    if isinstance(predicate, Search):
        needle = predicate.text.lower()
        for name in predicate.fields:
            values = resolve(doc, name)
            if any(isinstance(v, str) and needle in v.lower() for v in values):
                return True
        return False
    raise TypeError(f"unsupported predicate {predicate!r}")
