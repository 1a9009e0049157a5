from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .client import table_resource
from .errors import DdbInternal
from .retry import ddb_call


@dataclass(slots=True)
class Page:
    items: list[dict[str, Any]]
    last_evaluated_key: dict[str, Any] | None


class DynamoTable:
    def __init__(self, *, table_name: str):
        self.table_name = str(table_name)
        self._table = table_resource(self.table_name)

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        def _op():
            return self._table.get_item(Key=key).get("Item")

        return ddb_call("GetItem", _op, table_name=self.table_name, key=key)

    def put_item(self, *, item: dict[str, Any], condition_expression: Any | None = None) -> None:
        def _op():
            kwargs: dict[str, Any] = {"Item": item}
            if condition_expression is not None:
                kwargs["ConditionExpression"] = condition_expression
            return self._table.put_item(**kwargs)

        ddb_call("PutItem", _op, table_name=self.table_name)

    def update_item(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str],
        expression_attribute_values: dict[str, Any],
        condition_expression: Any | None = None,
    ) -> dict[str, Any] | None:
        def _op():
            kwargs: dict[str, Any] = {
                "Key": key,
                "UpdateExpression": update_expression,
                "ExpressionAttributeNames": expression_attribute_names,
                "ExpressionAttributeValues": expression_attribute_values,
                "ReturnValues": "ALL_NEW",
            }
            if condition_expression is not None:
                kwargs["ConditionExpression"] = condition_expression
            return self._table.update_item(**kwargs).get("Attributes")

        return ddb_call("UpdateItem", _op, table_name=self.table_name, key=key)

    def delete_item(self, *, key: dict[str, Any]) -> None:
        def _op():
            return self._table.delete_item(Key=key)

        ddb_call("DeleteItem", _op, table_name=self.table_name, key=key)

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 100,
        scan_index_forward: bool = False,
        filter_expression: Any | None = None,
        exclusive_start_key: dict[str, Any] | None = None,
    ) -> Page:
        lim = max(1, min(1000, int(limit or 100)))

        def _op():
            kwargs: dict[str, Any] = {
                "KeyConditionExpression": key_condition_expression,
                "ScanIndexForward": bool(scan_index_forward),
                "Limit": lim,
            }
            if index_name:
                kwargs["IndexName"] = index_name
            if filter_expression is not None:
                kwargs["FilterExpression"] = filter_expression
            # Only pass ExclusiveStartKey when continuing a query.
            if exclusive_start_key:
                kwargs["ExclusiveStartKey"] = exclusive_start_key
            return self._table.query(**kwargs)

        resp = ddb_call("Query", _op, table_name=self.table_name)
        return Page(items=list(resp.get("Items") or []), last_evaluated_key=resp.get("LastEvaluatedKey"))


def get_main_table() -> DynamoTable:
    from ...settings import settings

    if not settings.ddb_table_name:
        raise DdbInternal(message="DDB_TABLE_NAME is not set", operation="Config")
    return DynamoTable(table_name=settings.ddb_table_name)
