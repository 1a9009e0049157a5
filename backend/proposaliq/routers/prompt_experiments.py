from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from ..auth.access import current_user, ensure_org_access
from ..repositories.base_repository import EntityStore
from ..repositories.entity_store import get_entity_store
from ..services.prompt_experiments import ExperimentError, PromptExperimentService

router = APIRouter(tags=["prompt-experiments"])


def _service(request: Request, store: EntityStore, experiment_id: str | None = None) -> PromptExperimentService:
    user = current_user(request)
    svc = PromptExperimentService(store)
    if experiment_id:
        try:
            exp = svc.get_experiment(experiment_id)
        except ExperimentError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e)) from e
        if exp.get("organization_id"):
            ensure_org_access(store, user, exp["organization_id"])
        elif not user.is_admin:
            # Records created before experiments were org-scoped.
            raise HTTPException(status_code=403, detail="Forbidden")
    return svc


def _http(e: ExperimentError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


@router.post("", status_code=201)
def create_experiment(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    ensure_org_access(store, user, (body or {}).get("organization_id"))
    try:
        exp = PromptExperimentService(store).create_experiment(body or {}, created_by=user.email)
    except ExperimentError as e:
        raise _http(e) from e
    return {"success": True, "experiment": exp}


@router.put("/{experiment_id}/status")
def set_status(request: Request, experiment_id: str, body: dict, store: EntityStore = Depends(get_entity_store)):
    svc = _service(request, store, experiment_id)
    try:
        return {"success": True, "experiment": svc.set_status(experiment_id, (body or {}).get("status"))}
    except ExperimentError as e:
        raise _http(e) from e


@router.post("/{experiment_id}/assign")
def assign_variant(request: Request, experiment_id: str, body: dict, store: EntityStore = Depends(get_entity_store)):
    svc = _service(request, store, experiment_id)
    subject_id = (body or {}).get("subject_id") or current_user(request).sub
    try:
        assignment = svc.assign(experiment_id, subject_id)
    except ExperimentError as e:
        raise _http(e) from e
    exp = svc.get_experiment(experiment_id)
    return {
        "success": True,
        "assignment": assignment,
        "prompt": svc.variant_prompt(exp, assignment["variant_key"]),
    }


@router.post("/{experiment_id}/outcome")
def record_outcome(request: Request, experiment_id: str, body: dict, store: EntityStore = Depends(get_entity_store)):
    svc = _service(request, store, experiment_id)
    subject_id = (body or {}).get("subject_id") or current_user(request).sub
    try:
        rec = svc.record_outcome(
            experiment_id,
            subject_id,
            rating=(body or {}).get("rating"),
            accepted=(body or {}).get("accepted"),
        )
    except ExperimentError as e:
        raise _http(e) from e
    return {"success": True, "assignment": rec}


@router.get("/{experiment_id}/summary")
def summarize(request: Request, experiment_id: str, store: EntityStore = Depends(get_entity_store)):
    svc = _service(request, store, experiment_id)
    return {"success": True, "summary": svc.summarize(experiment_id)}
