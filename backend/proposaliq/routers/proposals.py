from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from ..auth.access import current_user, ensure_org_access, load_proposal
from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore
from ..repositories.entity_store import get_entity_store
from ..services.timeline import InvalidDueDate, generate_predictive_timeline

router = APIRouter(tags=["proposals"])
log = get_logger("proposals")

# Fields the client may not overwrite through the generic update endpoints.
_PROTECTED = {"id", "organization_id", "created_date", "updated_date", "created_by", "proposal_id"}


def _clean(body: dict[str, Any] | None) -> dict[str, Any]:
    return {k: v for k, v in (body or {}).items() if k not in _PROTECTED}


@router.get("")
def list_proposals(
    request: Request,
    organization_id: str | None = None,
    status: str | None = None,
    limit: int = 100,
    store: EntityStore = Depends(get_entity_store),
):
    user = current_user(request)
    ensure_org_access(store, user, organization_id)
    query: dict[str, Any] = {"organization_id": organization_id}
    if status:
        query["status"] = status
    items = store.filter("Proposal", query, sort="-created_date", limit=max(1, min(500, int(limit))))
    return {"success": True, "proposals": items}


@router.post("", status_code=201)
def create_proposal(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    organization_id = (body or {}).get("organization_id")
    name = str((body or {}).get("proposal_name") or "").strip()
    if not organization_id or not name:
        raise HTTPException(status_code=400, detail="organization_id and proposal_name are required")
    ensure_org_access(store, user, organization_id)

    proposal = store.create(
        "Proposal",
        {
            "status": "evaluating",
            **_clean(body),
            "proposal_name": name,
            "organization_id": organization_id,
            "created_by": user.email,
        },
    )
    log.info("proposal_created", proposal_id=proposal["id"], organization_id=organization_id)
    return {"success": True, "proposal": proposal}


@router.get("/{proposal_id}")
def get_proposal(request: Request, proposal_id: str, store: EntityStore = Depends(get_entity_store)):
    proposal = load_proposal(store, current_user(request), proposal_id)
    return {"success": True, "proposal": proposal}


@router.put("/{proposal_id}")
def update_proposal(
    request: Request, proposal_id: str, body: dict, store: EntityStore = Depends(get_entity_store)
):
    load_proposal(store, current_user(request), proposal_id)
    updated = store.update("Proposal", proposal_id, _clean(body))
    if not updated:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return {"success": True, "proposal": updated}


@router.delete("/{proposal_id}")
def delete_proposal(request: Request, proposal_id: str, store: EntityStore = Depends(get_entity_store)):
    load_proposal(store, current_user(request), proposal_id)

    chunks = store.filter("ProposalSectionChunk", {"proposal_id": proposal_id})
    sections = store.filter("ProposalSection", {"proposal_id": proposal_id})
    targets = [("ProposalSectionChunk", c["id"]) for c in chunks] + [
        ("ProposalSection", s["id"]) for s in sections
    ]
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda t: store.delete(*t), targets))
    store.delete("Proposal", proposal_id)

    log.info("proposal_deleted", proposal_id=proposal_id, sections=len(sections), chunks=len(chunks))
    return {"success": True, "deleted_sections": len(sections), "deleted_chunks": len(chunks)}


@router.get("/{proposal_id}/sections")
def list_sections(request: Request, proposal_id: str, store: EntityStore = Depends(get_entity_store)):
    load_proposal(store, current_user(request), proposal_id)
    return {"success": True, "sections": store.filter("ProposalSection", {"proposal_id": proposal_id}, sort="order")}


@router.post("/{proposal_id}/sections", status_code=201)
def create_section(
    request: Request, proposal_id: str, body: dict, store: EntityStore = Depends(get_entity_store)
):
    proposal = load_proposal(store, current_user(request), proposal_id)
    name = str((body or {}).get("section_name") or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="section_name is required")

    existing = store.filter("ProposalSection", {"proposal_id": proposal_id})
    section = store.create(
        "ProposalSection",
        {
            "order": len(existing) + 1,
            "status": "draft",
            "content": "",
            **_clean(body),
            "section_name": name,
            "proposal_id": proposal_id,
            "organization_id": proposal.get("organization_id"),
        },
    )
    return {"success": True, "section": section}


@router.put("/{proposal_id}/sections/{section_id}")
def update_section(
    request: Request,
    proposal_id: str,
    section_id: str,
    body: dict,
    store: EntityStore = Depends(get_entity_store),
):
    load_proposal(store, current_user(request), proposal_id)
    section = store.get("ProposalSection", section_id)
    if not section or section.get("proposal_id") != proposal_id:
        raise HTTPException(status_code=404, detail="Section not found")
    updated = store.update("ProposalSection", section_id, _clean(body))
    return {"success": True, "section": updated}


@router.post("/{proposal_id}/predictive-timeline")
def predictive_timeline(
    proposal_id: str, request: Request, body: dict, store: EntityStore = Depends(get_entity_store)
):
    proposal = load_proposal(store, current_user(request), proposal_id)
    final_due_date = (body or {}).get("final_due_date") or proposal.get("due_date")
    if not final_due_date:
        raise HTTPException(status_code=400, detail="final_due_date is required")

    try:
        return generate_predictive_timeline(
            store,
            proposal_id=proposal["id"],
            organization_id=proposal["organization_id"],
            final_due_date=final_due_date,
            proposal_type_category=(body or {}).get("proposal_type_category")
            or proposal.get("proposal_type_category"),
        )
    except InvalidDueDate as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
