"""
Declarative output schemas for LLM extraction.

Callers describe the fields they want as `FieldSpec`s (or send a JSON-schema
`properties` object) and get back a pydantic model that `call_json` can use
both for structured-output enforcement and for validating the reply.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, create_model

FieldType = Literal["string", "number", "integer", "boolean", "array", "object"]

_SCALARS: dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
}


class SchemaError(ValueError):
    pass


@dataclass
class FieldSpec:
    name: str
    type: FieldType = "string"
    description: str = ""
    required: bool = False
    # Element spec for arrays; defaults to strings.
    items: FieldSpec | None = None
    # Nested fields for objects.
    properties: list[FieldSpec] = field(default_factory=list)
    # Allowed values for strings.
    choices: list[str] | None = None


class ExtractionModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _model_name(name: str) -> str:
    cleaned = re.sub(r"[^0-9A-Za-z]+", " ", name or "").title().replace(" ", "")
    return cleaned or "Extraction"


def _python_type(spec: FieldSpec, *, owner: str) -> Any:
    if spec.type == "string" and spec.choices:
        return Literal[tuple(spec.choices)]
    if spec.type in _SCALARS:
        return _SCALARS[spec.type]
    if spec.type == "array":
        item = spec.items or FieldSpec(name=f"{spec.name}_item")
        return list[_python_type(item, owner=owner)]
    if spec.type == "object":
        if not spec.properties:
            return dict[str, Any]
        return build_response_model(f"{owner}_{spec.name}", spec.properties)
    raise SchemaError(f"Unsupported field type '{spec.type}' for '{spec.name}'")


def build_response_model(name: str, fields: list[FieldSpec]) -> type[BaseModel]:
    if not fields:
        raise SchemaError("At least one field is required")

    seen: set[str] = set()
    definitions: dict[str, Any] = {}
    for spec in fields:
        fname = str(spec.name or "").strip()
        if not fname.isidentifier() or fname.startswith("_"):
            raise SchemaError(f"Invalid field name '{spec.name}'")
        if fname in seen:
            raise SchemaError(f"Duplicate field '{fname}'")
        seen.add(fname)

        py_type = _python_type(spec, owner=name)
        if spec.required:
            definitions[fname] = (py_type, Field(..., description=spec.description or None))
        else:
            definitions[fname] = (py_type | None, Field(default=None, description=spec.description or None))

    return create_model(_model_name(name), __base__=ExtractionModel, **definitions)


def _spec_from_property(name: str, prop: dict[str, Any], *, required: bool) -> FieldSpec:
    if not isinstance(prop, dict):
        raise SchemaError(f"Property '{name}' must be an object")
    ptype = prop.get("type") or "string"
    # ["string", "null"] style unions collapse to the first non-null type.
    if isinstance(ptype, list):
        ptype = next((t for t in ptype if t != "null"), "string")
    if ptype not in ("string", "number", "integer", "boolean", "array", "object"):
        raise SchemaError(f"Unsupported type '{ptype}' for '{name}'")

    spec = FieldSpec(
        name=name,
        type=ptype,
        description=str(prop.get("description") or ""),
        required=required,
    )
    if ptype == "string" and isinstance(prop.get("enum"), list) and prop["enum"]:
        spec.choices = [str(v) for v in prop["enum"]]
    if ptype == "array" and isinstance(prop.get("items"), dict):
        spec.items = _spec_from_property(f"{name}_item", prop["items"], required=True)
    if ptype == "object" and isinstance(prop.get("properties"), dict):
        spec.properties = fields_from_json_schema(prop)
    return spec


def fields_from_json_schema(schema: dict[str, Any]) -> list[FieldSpec]:
    """
    Accepts either a JSON-schema object (`{"properties": ..., "required": [...]}`)
    or a bare `properties` mapping.
    """
    if not isinstance(schema, dict) or not schema:
        raise SchemaError("json_schema must be a non-empty object")

    props = schema.get("properties") if isinstance(schema.get("properties"), dict) else schema
    required = set(schema.get("required") or []) if "properties" in schema else set()
    return [
        _spec_from_property(str(name), prop, required=name in required)
        for name, prop in props.items()
    ]
