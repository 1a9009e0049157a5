from __future__ import annotations

import pydantic
import pytest

from proposaliq.ai.client import AiMeta, AiUpstreamError
from proposaliq.infrastructure.storage.file_fetch import FetchedFile
from proposaliq.services import past_performance
from proposaliq.services.past_performance import (
    PastPerformanceExtraction,
    UnsupportedDocument,
    document_extension,
    has_red_flags,
    parse_past_performance_document,
)

CPARS_TEXT = b"CPARS evaluation. Quality: Very Good. Schedule: Marginal."


@pytest.fixture
def fetched(monkeypatch):
    calls = []

    def _fetch(**kw):
        calls.append(kw)
        return FetchedFile(data=CPARS_TEXT, content_type="text/plain", file_name="cpars.txt")

    monkeypatch.setattr(past_performance, "fetch_file", _fetch)
    return calls


def _reply(monkeypatch, payload, seen=None):
    def _fake(*, purpose, response_model, messages, **_kw):
        if seen is not None:
            seen.append((purpose, messages))
        return (
            response_model.model_validate(payload),
            AiMeta(purpose=purpose, model="gpt-4o", attempts=1, used_response_format="chat_json_schema"),
        )

    monkeypatch.setattr(past_performance, "call_json", _fake)


def test_cpars_extraction_flags_marginal_ratings(monkeypatch, fetched):
    seen = []
    _reply(
        monkeypatch,
        {
            "title": "Bridge Inspection IDIQ",
            "overall_rating": "Satisfactory",
            "performance_ratings": {"quality": "Very Good", "schedule": "Marginal"},
            "extraction_confidence": 82,
            "fields_extracted": ["title", "overall_rating", "performance_ratings"],
        },
        seen,
    )

    data = parse_past_performance_document(file_url="https://files.example.com/cpars.txt", record_type="cpars")

    assert data["title"] == "Bridge Inspection IDIQ"
    assert data["has_red_flags"] is True
    assert data["record_type"] == "cpars"
    assert data["performance_ratings"] == {"quality": "Very Good", "schedule": "Marginal"}
    assert "extraction_confidence" not in data and "fields_extracted" not in data
    assert "government_narratives" not in data
    meta = data["ai_extraction_metadata"]
    assert meta["confidence_score"] == 82
    assert meta["fields_extracted"] == ["title", "overall_rating", "performance_ratings"]
    assert meta["extraction_method"] == "text_extraction"
    assert meta["manual_overrides"] == []
    assert data["document_file_name"] == "cpars.txt"

    purpose, messages = seen[0]
    assert purpose == "past_performance_extraction"
    assert "CPARS" in messages[0]["content"]
    assert "Schedule: Marginal" in messages[1]["content"]


def test_general_record_without_ratings_has_no_flags(monkeypatch, fetched):
    _reply(monkeypatch, {"title": "Website redesign", "customer_agency": "City of Austin"})
    data = parse_past_performance_document(file_url="https://files.example.com/ref.pdf")
    assert data["has_red_flags"] is False
    assert data["record_type"] == "general_pp"
    assert data["ai_extraction_metadata"]["confidence_score"] == 0
    assert data["ai_extraction_metadata"]["extraction_method"] == "pdf_text_extraction"


def test_overall_rating_only_flags_cpars_records():
    assert has_red_flags({"overall_rating": "Unsatisfactory"}, "cpars") is True
    assert has_red_flags({"overall_rating": "Unsatisfactory"}, "general_pp") is False
    assert has_red_flags({"performance_ratings": {"cost_control": "Unsatisfactory"}}, "general_pp") is True


def test_ratings_outside_the_scale_are_rejected():
    with pytest.raises(pydantic.ValidationError):
        PastPerformanceExtraction.model_validate({"performance_ratings": {"quality": "Great"}})


@pytest.mark.parametrize(
    "source, ext",
    [("https://x.example.com/a/Report.PDF?sig=1", "pdf"), ("uploads/pp.docx", "docx"), ("https://x.example.com/a", "")],
)
def test_document_extension(source, ext):
    assert document_extension(source) == ext


def test_unsupported_inputs_are_rejected_before_fetching(fetched):
    with pytest.raises(UnsupportedDocument):
        parse_past_performance_document(file_url="https://files.example.com/sheet.xlsx")
    with pytest.raises(UnsupportedDocument):
        parse_past_performance_document(file_url="https://files.example.com/a.txt", record_type="award")
    assert fetched == []


def test_parse_past_performance_endpoint(client, monkeypatch, fetched):
    _reply(monkeypatch, {"title": "Ops support", "overall_rating": "Marginal"})

    r = client.post(
        "/api/files/parse-past-performance",
        json={"file_url": "https://files.example.com/cpars.txt", "record_type": "cpars"},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"]["has_red_flags"] is True
    assert body["message"].startswith("Document parsed successfully")

    r = client.post("/api/files/parse-past-performance", json={})
    assert r.status_code == 400

    r = client.post("/api/files/parse-past-performance", json={"file_url": "https://files.example.com/a.png"})
    assert r.status_code == 400
    assert "Unsupported file type: png" in r.json()["detail"]


def test_parse_past_performance_ai_failure_is_unavailable(client, monkeypatch, fetched):
    def _boom(**_kw):
        raise AiUpstreamError("upstream down")

    monkeypatch.setattr(past_performance, "call_json", _boom)
    r = client.post("/api/files/parse-past-performance", json={"file_url": "https://files.example.com/cpars.txt"})
    assert r.status_code == 503
