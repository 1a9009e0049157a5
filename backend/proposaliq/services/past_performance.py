"""
Structured extraction of past performance records and CPARS evaluations.

The document is fetched, converted to text and sent to the model with an
extraction schema. The reply is flagged when any rating is Marginal or
Unsatisfactory.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from ..ai.client import call_json
from ..ai.schema_builder import FieldSpec, build_response_model
from ..infrastructure.storage.file_fetch import fetch_file
from ..infrastructure.storage.text_extraction import extract_text
from ..observability.logging import get_logger

log = get_logger("past_performance")

RECORD_TYPES = ("general_pp", "cpars")
MAX_PROMPT_TEXT_CHARS = 120_000
RED_FLAG_RATINGS = {"Marginal", "Unsatisfactory"}

# Extension -> extraction method reported in the metadata.
EXTRACTION_METHODS = {
    "pdf": "pdf_text_extraction",
    "docx": "docx_text_extraction",
    "doc": "docx_text_extraction",
    "txt": "text_extraction",
}

_RATINGS = ["Exceptional", "Very Good", "Satisfactory", "Marginal", "Unsatisfactory", "Not Applicable"]
_FACTORS = ["quality", "schedule", "cost_control", "management", "regulatory_compliance", "small_business_utilization"]


class UnsupportedDocument(ValueError):
    pass


def _s(name: str, description: str = "", choices: list[str] | None = None) -> FieldSpec:
    return FieldSpec(name=name, description=description, choices=choices)


def _tags(name: str, description: str) -> FieldSpec:
    return FieldSpec(name=name, type="array", description=description)


EXTRACTION_FIELDS: list[FieldSpec] = [
    _s("title", "Project name or CPARS title"),
    _s("customer_agency", "Government agency or client name"),
    _s("pop_start_date", "Period of Performance start date (YYYY-MM-DD format)"),
    _s("pop_end_date", "Period of Performance end date (YYYY-MM-DD format)"),
    FieldSpec(name="contract_value", type="number", description="Contract value in USD as a number"),
    _s("contract_value_display", "Human-readable contract value"),
    _s("place_of_performance", "Location where work was performed"),
    _tags("work_scope_tags", "Keywords describing the work performed"),
    _s("project_description", "Detailed description of the project"),
    _s("key_accomplishments", "Key achievements and outcomes"),
    _s("challenges_solutions", "Challenges faced and solutions implemented"),
    _s("client_satisfaction_summary", "Client feedback or satisfaction indicators"),
    _s("sub_agency_bureau", "Sub-agency or bureau name"),
    _s("contract_number", "Official contract number"),
    _s("task_order_number", "Task or delivery order number"),
    _s("role", "Organization's role on contract", ["prime", "subcontractor", "teaming_partner"]),
    _s("contract_type", "Type of contract", ["FFP", "T&M", "CPFF", "CPAF", "IDIQ", "BPA", "Cost_Plus", "Other"]),
    _tags("naics_codes", "NAICS codes"),
    _tags("psc_codes", "Product/Service codes"),
    _tags("small_business_program", "Small business designations"),
    _s("overall_rating", "Overall CPARS rating", [*_RATINGS, "Not Rated"]),
    FieldSpec(
        name="performance_ratings",
        type="object",
        properties=[_s(f, choices=_RATINGS) for f in _FACTORS],
    ),
    FieldSpec(
        name="government_narratives",
        type="object",
        properties=[_s(f) for f in [*_FACTORS, "overall"]],
    ),
    _s("contractor_comments_rebuttal", "Contractor's response or rebuttal"),
    _s("ai_extracted_key_outcomes", "Bulleted list of key outcomes"),
    _s("ai_generated_summary", "Overall performance summary"),
    FieldSpec(
        name="extraction_confidence",
        type="number",
        description="Overall confidence score from 0-100 for the extraction quality",
    ),
    _tags("fields_extracted", "List of field names successfully extracted"),
]

_COMMON_RULES = """
For dates, use YYYY-MM-DD format.
For contract values, extract both the numeric value and a human-readable display format.
Assign a confidence score (0-100) based on how clearly the data was present in the document.
List all fields you successfully extracted.

If a field is not present in the document, leave it null."""

PROMPTS = {
    "cpars": """You are an expert at extracting structured data from CPARS (Contractor Performance Assessment Reporting System) documents.

Analyze the provided document and extract ALL available information into the specified JSON schema.

Key extraction guidelines:
- Extract all performance ratings (Exceptional, Very Good, Satisfactory, Marginal, Unsatisfactory)
- Capture government narratives for each performance factor
- Extract contract metadata (numbers, dates, values, codes)
- Identify the contractor's role (prime or subcontractor)
- Pull out key accomplishments and outcomes
- Note any contractor comments or rebuttals
- Generate a concise summary of overall performance
- Create a bulleted list of key outcomes
""" + _COMMON_RULES,
    "general_pp": """You are an expert at extracting structured data from past performance references and project summaries.

Analyze the provided document and extract ALL available information into the specified JSON schema.

Key extraction guidelines:
- Extract project name/title
- Identify customer/client/agency
- Determine period of performance dates
- Extract contract value and scope
- Pull out project description and work performed
- Identify key accomplishments and outcomes
- Note any challenges and solutions
- Capture client satisfaction indicators or feedback
- Generate a concise summary of the project
- Create a bulleted list of key outcomes
""" + _COMMON_RULES,
}

PastPerformanceExtraction = build_response_model("PastPerformanceExtraction", EXTRACTION_FIELDS)


def document_extension(source: str) -> str:
    name = urlparse(source or "").path.rstrip("/").rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


def has_red_flags(data: dict[str, Any], record_type: str) -> bool:
    if record_type == "cpars" and data.get("overall_rating") in RED_FLAG_RATINGS:
        return True
    ratings = data.get("performance_ratings") or {}
    return any(v in RED_FLAG_RATINGS for v in ratings.values())


def parse_past_performance_document(
    *, file_url: str | None = None, s3_key: str | None = None, record_type: str = "general_pp"
) -> dict[str, Any]:
    """Fetch and extract one document.

    Raises UnsupportedDocument for unknown record types or extensions, and
    lets fetch, extraction and AI errors propagate to the caller.
    """
    if record_type not in RECORD_TYPES:
        raise UnsupportedDocument(f"record_type must be one of: {', '.join(RECORD_TYPES)}")
    source = file_url or s3_key or ""
    ext = document_extension(source)
    if ext not in EXTRACTION_METHODS:
        raise UnsupportedDocument(f"Unsupported file type: {ext or 'unknown'}. Supported formats: PDF, DOCX, TXT")

    fetched = fetch_file(file_url=file_url, s3_key=s3_key)
    text = extract_text(fetched.data, content_type=fetched.content_type, file_name=fetched.file_name)

    parsed, meta = call_json(
        purpose="past_performance_extraction",
        response_model=PastPerformanceExtraction,
        messages=[
            {"role": "system", "content": PROMPTS[record_type]},
            {"role": "user", "content": f"Document content:\n\n{text[:MAX_PROMPT_TEXT_CHARS]}"},
        ],
    )
    data = parsed.model_dump(exclude_none=True)
    confidence = data.pop("extraction_confidence", None) or 0
    fields_extracted = data.pop("fields_extracted", None) or []
    for key in ("performance_ratings", "government_narratives"):
        if key in data and not data[key]:
            data.pop(key)

    flagged = has_red_flags(data, record_type)
    log.info(
        "past_performance_parsed",
        file_name=fetched.file_name,
        record_type=record_type,
        model=meta.model,
        fields=len(data),
        red_flags=flagged,
    )
    return {
        **data,
        "record_type": record_type,
        "has_red_flags": flagged,
        "ai_extraction_metadata": {
            "extracted_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "confidence_score": confidence,
            "extraction_method": EXTRACTION_METHODS[ext],
            "fields_extracted": fields_extracted,
            "manual_overrides": [],
            "model": meta.model,
        },
        "document_file_url": file_url,
        "document_file_name": fetched.file_name,
    }
