from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from fastapi import APIRouter, Depends, HTTPException, Request

from ..auth.access import current_user, ensure_org_access, load_proposal
from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore
from ..repositories.entity_store import get_entity_store
from ..services.chunking import chunk_proposal_sections
from ..services.doc_ingestion import DOCUMENT_ENTITY, DocumentIngestionError, ingest_document
from ..services.proposal_context import build_proposal_context
from ..services.proposal_writer import write_section
from ..services.similarity import (
    CANDIDATE_POOL_LIMIT,
    DEFAULT_MAX_RESULTS,
    DEFAULT_MIN_RELEVANCE_SCORE,
    rank_candidates,
)

router = APIRouter(tags=["rag"])
log = get_logger("rag")


def _int(body: dict, key: str, default: int) -> int:
    raw = (body or {}).get(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"{key} must be an integer") from e


_TRUE = {"true", "1", "yes", "y", "on"}
_FALSE = {"false", "0", "no", "n", "off", ""}


def _flag(body: dict, key: str, default: bool) -> bool:
    raw = (body or {}).get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return raw != 0
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise HTTPException(status_code=400, detail=f"{key} must be a boolean")


@router.post("/discover-similar-proposals")
def discover_similar_proposals(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    current_id = (body or {}).get("current_proposal_id")
    if not current_id:
        raise HTTPException(status_code=400, detail="current_proposal_id is required")

    current = store.get("Proposal", str(current_id))
    if not current:
        raise HTTPException(status_code=404, detail="Proposal not found")
    organization_id = (body or {}).get("organization_id") or current.get("organization_id")
    if organization_id != current.get("organization_id"):
        raise HTTPException(status_code=403, detail="Proposal does not belong to this organization")
    ensure_org_access(store, user, organization_id)

    max_results = max(1, _int(body, "max_results", DEFAULT_MAX_RESULTS))
    min_score = _int(body, "min_relevance_score", DEFAULT_MIN_RELEVANCE_SCORE)
    prioritize_wins = _flag(body, "prioritize_wins", True)
    exclude = {str(x) for x in ((body or {}).get("exclude_proposal_ids") or []) if x}
    section_type = (body or {}).get("section_type")

    candidates = store.filter(
        "Proposal",
        {"organization_id": organization_id},
        sort="-created_date",
        limit=CANDIDATE_POOL_LIMIT,
    )
    candidates = [c for c in candidates if str(c.get("id")) != str(current_id) and str(c.get("id")) not in exclude]

    if section_type:
        # Only proposals that actually contain a section of the requested type.
        with ThreadPoolExecutor(max_workers=8) as pool:
            hits = list(
                pool.map(
                    lambda c: store.filter(
                        "ProposalSection", {"proposal_id": c["id"], "section_type": section_type}, limit=1
                    ),
                    candidates,
                )
            )
        candidates = [c for c, h in zip(candidates, hits) if h]

    ranked = rank_candidates(
        current,
        candidates,
        min_relevance_score=min_score,
        max_results=max_results,
        prioritize_wins=prioritize_wins,
        exclude_ids=exclude,
    )
    log.info(
        "similar_proposals_discovered",
        proposal_id=current_id,
        candidates=len(candidates),
        returned=len(ranked),
    )
    return {
        "success": True,
        "status": "success",
        "discovered_proposals": [r.to_dict() for r in ranked],
        "total_candidates_scored": len(candidates),
    }


@router.post("/chunk-proposal-sections")
def chunk_sections(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    proposal = load_proposal(store, current_user(request), (body or {}).get("proposal_id"))
    section_ids = (body or {}).get("section_ids")
    if section_ids is not None and not isinstance(section_ids, list):
        raise HTTPException(status_code=400, detail="section_ids must be a list")
    return chunk_proposal_sections(store, proposal, section_ids=section_ids)


@router.post("/ingest-supplementary-document")
def ingest_supplementary_document(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    document_id = (body or {}).get("document_id")
    if not document_id:
        raise HTTPException(status_code=400, detail="document_id is required")
    doc = store.get(DOCUMENT_ENTITY, str(document_id))
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    ensure_org_access(store, user, doc.get("organization_id"))

    try:
        return ingest_document(store, doc)
    except DocumentIngestionError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.post("/build-proposal-context")
def build_context(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    current_id = (body or {}).get("current_proposal_id")
    if not current_id:
        raise HTTPException(status_code=400, detail="current_proposal_id is required")
    current = load_proposal(store, user, current_id)

    refs = (body or {}).get("reference_proposal_ids") or []
    if not isinstance(refs, list):
        raise HTTPException(status_code=400, detail="reference_proposal_ids must be a list")

    return build_proposal_context(
        store,
        current,
        reference_proposal_ids=refs,
        target_section_type=(body or {}).get("target_section_type"),
        max_tokens=_int(body, "max_tokens", 0) or None,
        llm_provider=(body or {}).get("llm_provider") or "gemini",
        prioritize_winning=_flag(body, "prioritize_winning", True),
        enable_citations=_flag(body, "enable_citations", True),
    )


@router.post("/generate-section")
def generate_section(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    section_type = str((body or {}).get("section_type") or "").strip()
    if not (body or {}).get("proposal_id") or not section_type:
        raise HTTPException(status_code=400, detail="proposal_id and section_type are required")
    proposal = load_proposal(store, user, (body or {}).get("proposal_id"))

    params = (body or {}).get("generation_params") or {}
    if not isinstance(params, dict):
        raise HTTPException(status_code=400, detail="generation_params must be an object")

    return write_section(
        store,
        proposal,
        section_type,
        user_email=user.email,
        generation_params=params,
        agent_triggered=_flag(body, "agent_triggered", False),
    )
