from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from ..auth.access import can_access_org, current_user, load_proposal
from ..repositories.base_repository import EntityStore
from ..repositories.entity_store import get_entity_store
from ..services.proposal_export import FORMATS, ExportError, batch_export, export_proposal

router = APIRouter(tags=["exports"])

MAX_BATCH_PROPOSALS = 50


def _format(body: dict) -> str:
    fmt = str((body or {}).get("format") or "").strip().lower()
    if fmt not in FORMATS:
        raise HTTPException(status_code=400, detail='Invalid format. Use "docx" or "pdf"')
    return fmt


def _options(body: dict) -> dict:
    options = (body or {}).get("options") or {}
    if not isinstance(options, dict):
        raise HTTPException(status_code=400, detail="options must be an object")
    return options


@router.post("/proposal")
def export_one(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    section_ids = (body or {}).get("section_ids")
    if not (body or {}).get("proposal_id") or not isinstance(section_ids, list) or not section_ids:
        raise HTTPException(status_code=400, detail="Missing required parameters: proposal_id, section_ids, format")
    fmt = _format(body)
    proposal = load_proposal(store, user, (body or {}).get("proposal_id"))

    try:
        return export_proposal(
            store,
            proposal,
            section_ids,
            fmt,
            exported_by_email=user.email,
            exported_by_name=user.full_name,
            template_id=(body or {}).get("template_id"),
            options=_options(body),
        )
    except ExportError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/batch")
def export_batch(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    ids = (body or {}).get("proposal_ids")
    if not isinstance(ids, list) or not ids:
        raise HTTPException(status_code=400, detail="Missing required parameters: proposal_ids, format")
    if len(ids) > MAX_BATCH_PROPOSALS:
        raise HTTPException(status_code=400, detail=f"At most {MAX_BATCH_PROPOSALS} proposals per batch")
    fmt = _format(body)

    proposals = []
    orgs: dict[str, dict | None] = {}
    for pid in dict.fromkeys(str(i) for i in ids if i):
        proposal = store.get("Proposal", pid)
        if not proposal:
            continue
        org_id = str(proposal.get("organization_id") or "")
        if org_id not in orgs:
            orgs[org_id] = store.get("Organization", org_id) if org_id else None
        # Proposals the caller cannot see are treated as missing.
        if orgs[org_id] and can_access_org(user, orgs[org_id]):
            proposals.append(proposal)
    if not proposals:
        raise HTTPException(status_code=404, detail="No proposals found")

    return batch_export(
        store,
        proposals,
        fmt,
        exported_by_email=user.email,
        exported_by_name=user.full_name,
        template_id=(body or {}).get("template_id"),
        options=_options(body),
    )
