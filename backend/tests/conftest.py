from __future__ import annotations

import copy
import sys
import threading
from pathlib import Path
from typing import Any

import pytest

# Ensure `backend/` is on sys.path so `import proposaliq.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from proposaliq.auth.cognito import VerifiedUser  # noqa: E402
from proposaliq.repositories.base_repository import (  # noqa: E402
    EntityStore,
    matches_query,
    new_id,
    now_iso,
    sort_records,
)


class InMemoryEntityStore(EntityStore):
    """Dict-backed store with the same query/sort semantics as DynamoDB."""

    def __init__(self) -> None:
        self.records: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, entity: str, id: str) -> dict[str, Any] | None:
        rec = self.records.get(entity, {}).get(str(id))
        return copy.deepcopy(rec) if rec else None

    def filter(self, entity, query=None, sort=None, limit=None):
        rows = [copy.deepcopy(r) for r in self.records.get(entity, {}).values() if matches_query(r, query)]
        rows = sort_records(rows, sort)
        return rows[:limit] if limit else rows

    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        ts = now_iso()
        rec = {"created_date": ts, **copy.deepcopy(data), "updated_date": ts}
        rec["id"] = str(data.get("id") or new_id())
        with self._lock:
            self.records.setdefault(entity, {})[rec["id"]] = rec
        return copy.deepcopy(rec)

    def update(self, entity: str, id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            rec = self.records.get(entity, {}).get(str(id))
            if rec is None:
                return None
            rec.update(copy.deepcopy(updates))
            rec["updated_date"] = now_iso()
            return copy.deepcopy(rec)

    def delete(self, entity: str, id: str) -> None:
        with self._lock:
            self.records.get(entity, {}).pop(str(id), None)

    def count(self, entity: str) -> int:
        return len(self.records.get(entity, {}))


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def user() -> VerifiedUser:
    return VerifiedUser(sub="user-1", email="owner@example.com", full_name="Olive Owner")


@pytest.fixture
def org(store: InMemoryEntityStore, user: VerifiedUser) -> dict[str, Any]:
    return store.create(
        "Organization",
        {"organization_name": "Acme", "created_by": user.email, "member_emails": [user.email]},
    )


@pytest.fixture
def app(monkeypatch, store: InMemoryEntityStore, user: VerifiedUser):
    from proposaliq.main import create_app
    from proposaliq.middleware import auth as auth_mw
    from proposaliq.repositories.entity_store import get_entity_store

    def _verify(token: str) -> VerifiedUser:
        if token != "good-token":
            raise auth_mw.CognitoAuthError("invalid token")
        return user

    monkeypatch.setattr(auth_mw, "verify_bearer_token", _verify)
    application = create_app()
    application.dependency_overrides[get_entity_store] = lambda: store
    return application


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    c = TestClient(app, raise_server_exceptions=False)
    c.headers.update({"Authorization": "Bearer good-token"})
    return c
