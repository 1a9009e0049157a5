from __future__ import annotations

from typing import Any

from ..ai.client import call_json
from ..ai.schema_builder import FieldSpec, build_response_model
from ..infrastructure.storage.file_fetch import fetch_file
from ..infrastructure.storage.text_extraction import extract_text
from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore, now_iso
from .doc_priority import calculate_priority

log = get_logger("doc_ingestion")

DOCUMENT_ENTITY = "SolicitationDocument"
MAX_PROMPT_TEXT_CHARS = 120_000

EXTRACTION_FIELDS: list[FieldSpec] = [
    FieldSpec(name="summary", description="Two to four sentence summary of the document", required=True),
    FieldSpec(name="document_kind", description="amendment, q_a_response, sow, pws, clarification or other"),
    FieldSpec(
        name="key_requirements",
        type="array",
        description="Requirements the offeror must satisfy",
    ),
    FieldSpec(
        name="changes",
        type="array",
        description="Changes this document makes to the solicitation",
    ),
    FieldSpec(
        name="deadlines",
        type="array",
        description="Dates mentioned in the document",
        items=FieldSpec(
            name="deadline",
            type="object",
            properties=[
                FieldSpec(name="label", required=True),
                FieldSpec(name="date", description="ISO date when known", required=True),
            ],
        ),
    ),
    FieldSpec(name="evaluation_criteria", type="array", description="Evaluation factors"),
    FieldSpec(name="submission_instructions", description="Format, page limits and delivery instructions"),
]


class DocumentIngestionError(RuntimeError):
    pass


def _prompt(doc: dict[str, Any], text: str) -> str:
    kind = doc.get("supplementary_type") or ("supplementary" if doc.get("is_supplementary") else "base")
    clipped = text[:MAX_PROMPT_TEXT_CHARS]
    return (
        "You are extracting structured facts from a government solicitation document "
        "so they can be retrieved while writing a proposal.\n"
        f"Document name: {doc.get('document_name') or doc.get('file_name') or 'Untitled'}\n"
        f"Document type: {kind}\n"
        "Only report facts stated in the text.\n\n"
        f"DOCUMENT TEXT:\n{clipped}"
    )


def ingest_document(store: EntityStore, doc: dict[str, Any]) -> dict[str, Any]:
    """
    Fetch, extract and summarize a solicitation document, writing the result
    back onto the record. Any failure marks the record failed and raises.
    """
    doc_id = str(doc["id"])
    store.update(DOCUMENT_ENTITY, doc_id, {"rag_ingestion_status": "processing", "rag_ingestion_error": None})

    try:
        priority = calculate_priority(doc)
        fetched = fetch_file(file_url=doc.get("file_url"), s3_key=doc.get("s3_key"))
        text = extract_text(
            fetched.data,
            content_type=doc.get("content_type") or fetched.content_type,
            file_name=doc.get("file_name") or fetched.file_name,
        )
        model = build_response_model("SupplementaryDocumentExtraction", EXTRACTION_FIELDS)
        parsed, meta = call_json(
            purpose="document_extraction",
            response_model=model,
            messages=[{"role": "user", "content": _prompt(doc, text)}],
        )
        updated = store.update(
            DOCUMENT_ENTITY,
            doc_id,
            {
                "rag_priority_score": priority,
                "rag_extracted_data": parsed.model_dump(),
                "rag_ingested": True,
                "rag_ingested_date": now_iso(),
                "rag_ingestion_status": "completed",
                "rag_text_length": len(text),
                "rag_model": meta.model,
            },
        )
    except Exception as e:  # noqa: BLE001
        log.error("document_ingestion_failed", document_id=doc_id, error=str(e))
        store.update(
            DOCUMENT_ENTITY,
            doc_id,
            {"rag_ingestion_status": "failed", "rag_ingestion_error": str(e)[:1000]},
        )
        raise DocumentIngestionError(str(e) or e.__class__.__name__) from e

    log.info("document_ingested", document_id=doc_id, priority=priority, text_length=len(text))
    return {
        "success": True,
        "document_id": doc_id,
        "priority_score": priority,
        "extracted_data": (updated or {}).get("rag_extracted_data"),
    }
