from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from ..ai.client import call_json
from ..ai.schema_builder import SchemaError, build_response_model, fields_from_json_schema
from ..auth.access import current_user
from ..infrastructure.storage.file_fetch import FileFetchError, fetch_file
from ..infrastructure.storage.text_extraction import TextExtractionError, extract_text
from ..observability.logging import get_logger
from ..services.past_performance import UnsupportedDocument, parse_past_performance_document

router = APIRouter(tags=["files"])
log = get_logger("files")

MAX_PROMPT_TEXT_CHARS = 120_000


@router.post("/extract-data")
def extract_data_from_file(request: Request, body: dict):
    current_user(request)
    file_url = (body or {}).get("file_url")
    s3_key = (body or {}).get("s3_key")
    schema = (body or {}).get("json_schema")
    if not file_url and not s3_key:
        raise HTTPException(status_code=400, detail="file_url or s3_key is required")
    if not isinstance(schema, dict):
        raise HTTPException(status_code=400, detail="json_schema is required")

    try:
        model = build_response_model("FileExtraction", fields_from_json_schema(schema))
    except SchemaError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    try:
        fetched = fetch_file(file_url=file_url, s3_key=s3_key)
    except FileFetchError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    try:
        text = extract_text(fetched.data, content_type=fetched.content_type, file_name=fetched.file_name)
    except TextExtractionError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    instructions = str((body or {}).get("instructions") or "").strip()
    prompt = (
        "Extract the requested fields from the document below. "
        "Use null for anything the document does not state.\n"
        + (f"Additional instructions: {instructions}\n" if instructions else "")
        + f"\nDOCUMENT ({fetched.file_name}):\n{text[:MAX_PROMPT_TEXT_CHARS]}"
    )
    parsed, meta = call_json(
        purpose="file_extraction",
        response_model=model,
        messages=[{"role": "user", "content": prompt}],
    )
    log.info("file_data_extracted", file_name=fetched.file_name, model=meta.model, fields=len(model.model_fields))
    return {"success": True, "status": "success", "output": parsed.model_dump(), "model": meta.model}


@router.post("/parse-past-performance")
def parse_past_performance(request: Request, body: dict):
    current_user(request)
    file_url = (body or {}).get("file_url")
    s3_key = (body or {}).get("s3_key")
    if not file_url and not s3_key:
        raise HTTPException(status_code=400, detail="file_url is required")

    try:
        data = parse_past_performance_document(
            file_url=file_url,
            s3_key=s3_key,
            record_type=str((body or {}).get("record_type") or "general_pp"),
        )
    except (UnsupportedDocument, FileFetchError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except TextExtractionError as e:
        raise HTTPException(status_code=400, detail=f"Failed to parse document: {e}") from e

    return {
        "success": True,
        "data": data,
        "message": "Document parsed successfully. Please review and edit the extracted data as needed.",
    }
