"""
Entity store interface.

Entities are loosely-typed documents grouped by type name ("Proposal",
"ProposalSection", ...). Every implementation stamps `id`, `created_date` and
`updated_date`, and shares the query/sort semantics defined here.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex


def matches_query(record: dict[str, Any], query: dict[str, Any] | None) -> bool:
    """Equality match on every key of `query`."""
    for k, v in (query or {}).items():
        if record.get(k) != v:
            return False
    return True


def sort_records(
    records: list[dict[str, Any]], sort: str | None
) -> list[dict[str, Any]]:
    """
    Sort by a field name, `-field` for descending.

    Records missing the field always come last.
    """
    if not sort:
        return list(records)

    descending = sort.startswith("-")
    field = sort.lstrip("-")
    present = [r for r in records if r.get(field) is not None]
    missing = [r for r in records if r.get(field) is None]
    try:
        present.sort(key=lambda r: r[field], reverse=descending)
    except TypeError:
        # Mixed value types: order by string form.
        present.sort(key=lambda r: str(r[field]), reverse=descending)
    return present + missing


class EntityStore(ABC):
    """Document store used by every handler."""

    @abstractmethod
    def get(self, entity: str, id: str) -> dict[str, Any] | None:
        """Get an entity by ID."""

    @abstractmethod
    def filter(
        self,
        entity: str,
        query: dict[str, Any] | None = None,
        sort: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List entities whose fields equal every value in `query`."""

    @abstractmethod
    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a new entity."""

    @abstractmethod
    def update(
        self, entity: str, id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Shallow-merge `updates` into an existing entity."""

    @abstractmethod
    def delete(self, entity: str, id: str) -> None:
        """Delete an entity (no-op when missing)."""
