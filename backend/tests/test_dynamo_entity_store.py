from __future__ import annotations

from decimal import Decimal

import pytest
from botocore.exceptions import ClientError

from proposaliq.db.dynamodb import retry as ddb_retry
from proposaliq.db.dynamodb.errors import DdbConflict, DdbInternal, DdbThrottled, status_code_for
from proposaliq.db.dynamodb.retry import RetryPolicy, ddb_call
from proposaliq.db.dynamodb.table import Page
from proposaliq.repositories.base_repository import sort_records
from proposaliq.repositories.entity_store import DynamoEntityStore, entity_key, from_ddb, to_ddb


class FakeTable:
    """Records calls; serves canned query pages."""

    def __init__(self, pages=None):
        self.items: dict[tuple[str, str], dict] = {}
        self.pages = list(pages or [])
        self.queries: list[dict] = []
        self.puts: list[dict] = []
        self.conflict_on_update = False

    def get_item(self, *, key):
        return self.items.get((key["pk"], key["sk"]))

    def put_item(self, *, item, condition_expression=None):
        self.puts.append({"item": item, "condition": condition_expression})
        self.items[(item["pk"], item["sk"])] = item

    def update_item(self, *, key, update_expression, expression_attribute_names, expression_attribute_values,
                    condition_expression=None):
        if self.conflict_on_update:
            raise DdbConflict(message="Conditional check failed", operation="UpdateItem")
        item = self.items[(key["pk"], key["sk"])]
        for alias, name in expression_attribute_names.items():
            item[name] = expression_attribute_values[":v" + alias[2:]]
        return item

    def delete_item(self, *, key):
        self.items.pop((key["pk"], key["sk"]), None)

    def query_page(self, **kwargs):
        self.queries.append(kwargs)
        return self.pages.pop(0) if self.pages else Page(items=[], last_evaluated_key=None)


def test_decimal_conversion_round_trip_shapes():
    assert to_ddb({"a": 1.5, "b": [2.25, "x"], "c": 3}) == {"a": Decimal("1.5"), "b": [Decimal("2.25"), "x"], "c": 3}
    assert from_ddb({"a": Decimal("2"), "b": [Decimal("0.5")]}) == {"a": 2, "b": [0.5]}
    assert isinstance(from_ddb(Decimal("2")), int)


def test_create_writes_keys_and_condition():
    table = FakeTable()
    store = DynamoEntityStore(table)

    rec = store.create("Proposal", {"proposal_name": "P", "score": 1.5, "pk": "spoofed"})
    assert rec["id"]
    assert rec["created_date"] == rec["updated_date"]
    assert "pk" not in rec

    item = table.puts[0]["item"]
    assert item["pk"] == f"ENTITY#Proposal#{rec['id']}"
    assert item["sk"] == "RECORD"
    assert item["gsi1pk"] == "TYPE#Proposal"
    assert item["gsi1sk"] == f"{rec['created_date']}#{rec['id']}"
    assert item["score"] == Decimal("1.5")
    assert table.puts[0]["condition"] is not None

    got = store.get("Proposal", rec["id"])
    assert got["score"] == 1.5
    assert "gsi1pk" not in got and "entity_type" not in got


def test_update_sets_fields_and_returns_none_when_missing():
    table = FakeTable()
    store = DynamoEntityStore(table)
    rec = store.create("Proposal", {"status": "draft"})

    updated = store.update("Proposal", rec["id"], {"status": "won", "id": "ignored", "created_date": "x"})
    assert updated["status"] == "won"
    assert updated["id"] == rec["id"]
    assert updated["created_date"] == rec["created_date"]

    table.conflict_on_update = True
    assert store.update("Proposal", "missing", {"status": "won"}) is None


def test_filter_pages_until_exhausted_then_sorts():
    pages = [
        Page(items=[{"pk": "p", "id": "a", "n": Decimal(2)}], last_evaluated_key={"pk": "k1"}),
        Page(items=[{"pk": "p", "id": "b", "n": Decimal(1)}], last_evaluated_key=None),
    ]
    table = FakeTable(pages)
    store = DynamoEntityStore(table)

    out = store.filter("Proposal", {"organization_id": "o1"}, sort="n")
    assert [r["id"] for r in out] == ["b", "a"]
    assert len(table.queries) == 2
    assert table.queries[0]["index_name"] == "GSI1"
    assert table.queries[0]["scan_index_forward"] is False
    assert table.queries[0]["filter_expression"] is not None
    assert table.queries[1]["exclusive_start_key"] == {"pk": "k1"}


def test_filter_stops_early_with_limit_and_no_sort():
    pages = [
        Page(items=[{"id": "a"}, {"id": "b"}], last_evaluated_key={"pk": "k1"}),
        Page(items=[{"id": "c"}], last_evaluated_key=None),
    ]
    table = FakeTable(pages)
    out = DynamoEntityStore(table).filter("Proposal", limit=1)
    assert [r["id"] for r in out] == ["a"]
    assert len(table.queries) == 1
    assert table.queries[0]["filter_expression"] is None


def test_filter_by_id_uses_direct_get():
    table = FakeTable()
    store = DynamoEntityStore(table)
    rec = store.create("Proposal", {"status": "won"})

    assert store.filter("Proposal", {"id": rec["id"]})[0]["id"] == rec["id"]
    assert store.filter("Proposal", {"id": rec["id"], "status": "lost"}) == []
    assert table.queries == []


def test_delete_removes_item():
    table = FakeTable()
    store = DynamoEntityStore(table)
    rec = store.create("Proposal", {})
    store.delete("Proposal", rec["id"])
    assert (entity_key("Proposal", rec["id"])["pk"], "RECORD") not in table.items


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"RequestId": "rid"}}, "Query")


def test_ddb_call_retries_transient_errors(monkeypatch):
    monkeypatch.setattr(ddb_retry.time, "sleep", lambda _s: None)
    calls = {"n": 0}

    def _op():
        calls["n"] += 1
        if calls["n"] < 3:
            raise _client_error("ThrottlingException")
        return "ok"

    assert ddb_call("Query", _op) == "ok"
    assert calls["n"] == 3

    with pytest.raises(DdbThrottled) as e:
        ddb_call("Query", lambda: (_ for _ in ()).throw(_client_error("ThrottlingException")),
                 retry_policy=RetryPolicy(max_attempts=2))
    assert e.value.aws_request_id == "rid"
    assert status_code_for(e.value) == 503


def test_ddb_call_does_not_retry_conflicts(monkeypatch):
    monkeypatch.setattr(ddb_retry.time, "sleep", lambda _s: pytest.fail("should not sleep"))
    calls = {"n": 0}

    def _op():
        calls["n"] += 1
        raise _client_error("ConditionalCheckFailedException")

    with pytest.raises(DdbConflict) as e:
        ddb_call("PutItem", _op, table_name="t")
    assert calls["n"] == 1
    assert status_code_for(e.value) == 409

    with pytest.raises(DdbInternal):
        ddb_call("PutItem", lambda: 1 / 0)


def test_sort_records_puts_missing_last():
    rows = [{"id": 1, "v": 2}, {"id": 2}, {"id": 3, "v": 5}]
    assert [r["id"] for r in sort_records(rows, "v")] == [1, 3, 2]
    assert [r["id"] for r in sort_records(rows, "-v")] == [3, 1, 2]
    mixed = [{"v": "b"}, {"v": 1}]
    assert [r["v"] for r in sort_records(mixed, "v")] == [1, "b"]
