from __future__ import annotations

import pydantic
import pytest

from proposaliq.ai.client import AiMeta
from proposaliq.ai.schema_builder import (
    FieldSpec,
    SchemaError,
    build_response_model,
    fields_from_json_schema,
)
from proposaliq.infrastructure.storage.file_fetch import FetchedFile
from proposaliq.infrastructure.storage.text_extraction import TextExtractionError, extract_text


def test_build_model_required_optional_and_nested():
    model = build_response_model(
        "contract facts",
        [
            FieldSpec(name="agency", required=True),
            FieldSpec(name="value", type="number"),
            FieldSpec(name="tags", type="array"),
            FieldSpec(
                name="contact",
                type="object",
                properties=[FieldSpec(name="email", required=True)],
            ),
        ],
    )
    assert model.__name__ == "ContractFacts"

    parsed = model.model_validate({"agency": "GSA", "contact": {"email": "a@b.gov"}, "unexpected": 1})
    assert parsed.agency == "GSA"
    assert parsed.value is None
    assert parsed.contact.email == "a@b.gov"
    assert "unexpected" not in parsed.model_dump()

    with pytest.raises(pydantic.ValidationError):
        model.model_validate({"value": 3})


@pytest.mark.parametrize(
    "fields",
    [
        [],
        [FieldSpec(name="not valid")],
        [FieldSpec(name="_private")],
        [FieldSpec(name="a"), FieldSpec(name="a")],
    ],
)
def test_build_model_rejects_bad_fields(fields):
    with pytest.raises(SchemaError):
        build_response_model("X", fields)


def test_fields_from_full_json_schema():
    specs = fields_from_json_schema(
        {
            "type": "object",
            "properties": {
                "due_date": {"type": ["string", "null"], "description": "Due date"},
                "amounts": {"type": "array", "items": {"type": "number"}},
                "poc": {"type": "object", "properties": {"name": {"type": "string"}}, "required": ["name"]},
            },
            "required": ["due_date"],
        }
    )
    by_name = {s.name: s for s in specs}
    assert by_name["due_date"].type == "string" and by_name["due_date"].required
    assert by_name["amounts"].items.type == "number"
    assert by_name["poc"].properties[0].required is True


def test_fields_from_bare_properties_are_optional():
    specs = fields_from_json_schema({"title": {"type": "string"}, "pages": {"type": "integer"}})
    assert [(s.name, s.type, s.required) for s in specs] == [("title", "string", False), ("pages", "integer", False)]


def test_fields_from_json_schema_rejects_unknown_types():
    with pytest.raises(SchemaError):
        fields_from_json_schema({"x": {"type": "date"}})
    with pytest.raises(SchemaError):
        fields_from_json_schema({})


def test_extract_text_plain_and_errors():
    assert extract_text(b"  hello  ", content_type="text/plain") == "hello"
    with pytest.raises(TextExtractionError):
        extract_text(b"")
    with pytest.raises(TextExtractionError):
        extract_text(b"   \n ", file_name="notes.txt")
    with pytest.raises(TextExtractionError):
        extract_text(b"not really a pdf", content_type="application/pdf")


def test_extract_data_endpoint(client, monkeypatch):
    from proposaliq.routers import files

    monkeypatch.setattr(
        files,
        "fetch_file",
        lambda **_kw: FetchedFile(data=b"Contract value is $2M.", content_type="text/plain", file_name="rfp.txt"),
    )

    def _fake_call_json(*, purpose, response_model, messages, **_kw):
        assert purpose == "file_extraction"
        assert "Be terse" in messages[0]["content"]
        return (
            response_model.model_validate({"contract_value": 2000000}),
            AiMeta(purpose=purpose, model="gpt-4o-mini", attempts=1, used_response_format="chat_json_schema"),
        )

    monkeypatch.setattr(files, "call_json", _fake_call_json)

    r = client.post(
        "/api/files/extract-data",
        json={
            "file_url": "https://files.example.com/rfp.txt",
            "json_schema": {"contract_value": {"type": "number"}, "agency": {"type": "string"}},
            "instructions": "Be terse",
        },
    )
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["output"] == {"contract_value": 2000000.0, "agency": None}
    assert body["model"] == "gpt-4o-mini"


def test_extract_data_endpoint_validation(client):
    r = client.post("/api/files/extract-data", json={"json_schema": {"a": {"type": "string"}}})
    assert r.status_code == 400

    r = client.post("/api/files/extract-data", json={"file_url": "https://x.example.com/a"})
    assert r.status_code == 400

    r = client.post(
        "/api/files/extract-data",
        json={"file_url": "https://x.example.com/a", "json_schema": {"a": {"type": "date"}}},
    )
    assert r.status_code == 400

    r = client.post(
        "/api/files/extract-data",
        json={"file_url": "ftp://x.example.com/a", "json_schema": {"a": {"type": "string"}}},
    )
    assert r.status_code == 400


def test_enum_properties_become_choices():
    specs = fields_from_json_schema(
        {"role": {"type": "string", "enum": ["prime", "subcontractor"]}, "note": {"type": "string"}}
    )
    assert specs[0].choices == ["prime", "subcontractor"]
    assert specs[1].choices is None

    model = build_response_model("Roles", specs)
    assert model.model_validate({"role": "prime"}).role == "prime"
    with pytest.raises(pydantic.ValidationError):
        model.model_validate({"role": "vendor"})
