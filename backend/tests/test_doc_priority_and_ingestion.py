from __future__ import annotations

import pytest

from proposaliq.ai.client import AiMeta, AiUpstreamError
from proposaliq.infrastructure.storage.file_fetch import FetchedFile, FileFetchError
from proposaliq.services import doc_ingestion
from proposaliq.services.doc_priority import calculate_priority


@pytest.mark.parametrize(
    "doc,expected",
    [
        ({}, 60),
        ({"is_latest_version": True}, 65),
        ({"is_supplementary": True, "supplementary_type": "q_a_response"}, 95),
        ({"is_supplementary": True, "supplementary_type": "SOW"}, 90),
        ({"is_supplementary": True, "supplementary_type": "exhibit"}, 75),
        ({"is_supplementary": True, "supplementary_type": "amendment", "amendment_number": 2}, 98),
        (
            {
                "is_supplementary": True,
                "supplementary_type": "amendment",
                "amendment_number": 9,
                "is_latest_version": True,
            },
            100,
        ),
        ({"priority_boost": -80}, 0),
        ({"priority_boost": "12"}, 72),
        # Only supplementary amendments earn the amendment-number bonus.
        ({"supplementary_type": "amendment", "amendment_number": 3}, 60),
        ({"is_supplementary": True, "supplementary_type": "amendment", "amendment_number": "inf"}, 96),
        ({"is_supplementary": True, "supplementary_type": "amendment", "amendment_number": "1e400"}, 96),
        ({"priority_boost": "nan"}, 60),
        ({"priority_boost": float("-inf")}, 60),
    ],
)
def test_calculate_priority(doc, expected):
    assert calculate_priority(doc) == expected


def _doc(store, **kw):
    return store.create(
        doc_ingestion.DOCUMENT_ENTITY,
        {
            "organization_id": "org1",
            "document_name": "Amendment 1",
            "file_url": "https://files.example.com/a1.txt",
            "is_supplementary": True,
            "supplementary_type": "amendment",
            "amendment_number": 1,
            **kw,
        },
    )


def test_ingest_document_writes_extraction_back(store, monkeypatch):
    doc = _doc(store)
    monkeypatch.setattr(
        doc_ingestion,
        "fetch_file",
        lambda **_kw: FetchedFile(data=b"Proposals are now due July 1.", content_type="text/plain", file_name="a1.txt"),
    )

    def _fake_call_json(*, purpose, response_model, messages, **_kw):
        assert purpose == "document_extraction"
        assert "Proposals are now due July 1." in messages[0]["content"]
        parsed = response_model.model_validate(
            {"summary": "Moves the due date.", "deadlines": [{"label": "Proposal due", "date": "2025-07-01"}]}
        )
        return parsed, AiMeta(purpose=purpose, model="gpt-4o-mini", attempts=1, used_response_format="chat_json_schema")

    monkeypatch.setattr(doc_ingestion, "call_json", _fake_call_json)

    out = doc_ingestion.ingest_document(store, doc)
    assert out["success"] is True
    assert out["priority_score"] == 97
    assert out["extracted_data"]["summary"] == "Moves the due date."
    assert out["extracted_data"]["deadlines"] == [{"label": "Proposal due", "date": "2025-07-01"}]

    saved = store.get(doc_ingestion.DOCUMENT_ENTITY, doc["id"])
    assert saved["rag_ingested"] is True
    assert saved["rag_ingestion_status"] == "completed"
    assert saved["rag_priority_score"] == 97
    assert saved["rag_text_length"] == len("Proposals are now due July 1.")
    assert saved["rag_model"] == "gpt-4o-mini"


def test_ingest_document_marks_failure(store, monkeypatch):
    doc = _doc(store)

    def _fail(**_kw):
        raise FileFetchError("Failed to fetch file (HTTP 404)")

    monkeypatch.setattr(doc_ingestion, "fetch_file", _fail)

    with pytest.raises(doc_ingestion.DocumentIngestionError):
        doc_ingestion.ingest_document(store, doc)

    saved = store.get(doc_ingestion.DOCUMENT_ENTITY, doc["id"])
    assert saved["rag_ingestion_status"] == "failed"
    assert "HTTP 404" in saved["rag_ingestion_error"]
    assert not saved.get("rag_ingested")


def test_ingest_document_marks_ai_failure(store, monkeypatch):
    doc = _doc(store)
    monkeypatch.setattr(
        doc_ingestion,
        "fetch_file",
        lambda **_kw: FetchedFile(data=b"text", content_type="text/plain", file_name="a.txt"),
    )

    def _ai_down(**_kw):
        raise AiUpstreamError("ai_temporarily_unavailable")

    monkeypatch.setattr(doc_ingestion, "call_json", _ai_down)
    with pytest.raises(doc_ingestion.DocumentIngestionError):
        doc_ingestion.ingest_document(store, doc)
    assert store.get(doc_ingestion.DOCUMENT_ENTITY, doc["id"])["rag_ingestion_status"] == "failed"


def test_ingest_endpoint_checks_org_access(client, store, org, monkeypatch):
    foreign = store.create("Organization", {"created_by": "someone@else.com"})
    doc = _doc(store, organization_id=foreign["id"])
    r = client.post("/api/rag/ingest-supplementary-document", json={"document_id": doc["id"]})
    assert r.status_code == 403

    r = client.post("/api/rag/ingest-supplementary-document", json={})
    assert r.status_code == 400

    r = client.post("/api/rag/ingest-supplementary-document", json={"document_id": "missing"})
    assert r.status_code == 404


def test_ingest_endpoint_failure_is_500(client, store, org, monkeypatch):
    doc = _doc(store, organization_id=org["id"], file_url=None)
    r = client.post("/api/rag/ingest-supplementary-document", json={"document_id": doc["id"]})
    assert r.status_code == 500
    assert r.json()["success"] is False
    assert store.get(doc_ingestion.DOCUMENT_ENTITY, doc["id"])["rag_ingestion_status"] == "failed"
