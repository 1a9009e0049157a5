from __future__ import annotations

from decimal import Decimal
from functools import reduce
from typing import Any

from boto3.dynamodb.conditions import Attr, Key

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.table import DynamoTable, get_main_table
from .base_repository import EntityStore, matches_query, new_id, now_iso, sort_records

_KEY_FIELDS = ("pk", "sk", "gsi1pk", "gsi1sk", "entity_type")
_IMMUTABLE_FIELDS = frozenset({"id", "created_date", *_KEY_FIELDS})

_QUERY_PAGE_SIZE = 200


def entity_key(entity: str, id: str) -> dict[str, str]:
    return {"pk": f"ENTITY#{entity}#{id}", "sk": "RECORD"}


def type_pk(entity: str) -> str:
    return f"TYPE#{entity}"


def to_ddb(value: Any) -> Any:
    # The boto3 resource layer rejects floats.
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_ddb(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_ddb(v) for v in value]
    return value


def from_ddb(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_ddb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_ddb(v) for v in value]
    return value


def _normalize(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    out = from_ddb(dict(item))
    for k in _KEY_FIELDS:
        out.pop(k, None)
    return out


class DynamoEntityStore(EntityStore):
    """
    Single-table layout:

      pk=ENTITY#<Type>#<id>, sk=RECORD
      gsi1pk=TYPE#<Type>, gsi1sk=<created_date>#<id>   (GSI1, newest first)
    """

    def __init__(self, table: DynamoTable):
        self.table = table

    def get(self, entity: str, id: str) -> dict[str, Any] | None:
        if not id:
            return None
        return _normalize(self.table.get_item(key=entity_key(entity, str(id))))

    def filter(
        self,
        entity: str,
        query: dict[str, Any] | None = None,
        sort: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        query = dict(query or {})

        # Direct key lookup when the caller filters by id.
        if query.get("id"):
            rec = self.get(entity, str(query["id"]))
            return [rec] if rec and matches_query(rec, query) else []

        filter_expression = None
        if query:
            filter_expression = reduce(
                lambda acc, cond: acc & cond,
                [Attr(k).eq(to_ddb(v)) for k, v in query.items()],
            )

        # Without an explicit sort, GSI1 order (newest first) is the result order
        # and we can stop as soon as `limit` rows are collected.
        can_stop_early = limit is not None and not sort

        out: list[dict[str, Any]] = []
        start_key: dict[str, Any] | None = None
        while True:
            page = self.table.query_page(
                index_name="GSI1",
                key_condition_expression=Key("gsi1pk").eq(type_pk(entity)),
                filter_expression=filter_expression,
                scan_index_forward=False,
                limit=_QUERY_PAGE_SIZE,
                exclusive_start_key=start_key,
            )
            for it in page.items:
                norm = _normalize(it)
                if norm is not None:
                    out.append(norm)
            start_key = page.last_evaluated_key
            if not start_key or (can_stop_early and len(out) >= int(limit or 0)):
                break

        out = sort_records(out, sort)
        if limit is not None:
            out = out[: max(0, int(limit))]
        return out

    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        now = now_iso()
        record = {k: v for k, v in dict(data or {}).items() if k not in _KEY_FIELDS}
        record["id"] = str(record.get("id") or new_id())
        record["created_date"] = record.get("created_date") or now
        record["updated_date"] = now

        item = {
            **entity_key(entity, record["id"]),
            "gsi1pk": type_pk(entity),
            "gsi1sk": f"{record['created_date']}#{record['id']}",
            "entity_type": entity,
            **to_ddb(record),
        }
        self.table.put_item(item=item, condition_expression=Attr("pk").not_exists())
        return record

    def update(
        self, entity: str, id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        fields = {k: v for k, v in dict(updates or {}).items() if k not in _IMMUTABLE_FIELDS}
        fields["updated_date"] = now_iso()

        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        sets: list[str] = []
        for i, (k, v) in enumerate(fields.items()):
            names[f"#f{i}"] = k
            values[f":v{i}"] = to_ddb(v)
            sets.append(f"#f{i} = :v{i}")

        try:
            attrs = self.table.update_item(
                key=entity_key(entity, str(id)),
                update_expression="SET " + ", ".join(sets),
                expression_attribute_names=names,
                expression_attribute_values=values,
                condition_expression=Attr("pk").exists(),
            )
        except DdbConflict:
            return None
        return _normalize(attrs)

    def delete(self, entity: str, id: str) -> None:
        self.table.delete_item(key=entity_key(entity, str(id)))


def get_entity_store() -> EntityStore:
    """FastAPI dependency; tests override it with an in-memory store."""
    return DynamoEntityStore(get_main_table())
