from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from ..auth.access import current_user, ensure_org_access
from ..infrastructure.email_ses import EmailNotConfigured
from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore
from ..repositories.entity_store import get_entity_store
from ..services import data_calls
from ..services.data_calls import DATA_CALL_ENTITY, PortalError

router = APIRouter(tags=["data-calls"])
portal_router = APIRouter(tags=["data-call-portal"])
log = get_logger("data_calls_router")


def _redact(dc: dict) -> dict:
    return {k: v for k, v in dc.items() if k != "access_token"}


@router.get("")
def list_data_calls(request: Request, organization_id: str | None = None, store: EntityStore = Depends(get_entity_store)):
    ensure_org_access(store, current_user(request), organization_id)
    rows = store.filter(DATA_CALL_ENTITY, {"organization_id": organization_id}, sort="-created_date")
    return {"success": True, "data_calls": [_redact(r) for r in rows]}


@router.post("", status_code=201)
def create_data_call(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    organization_id = (body or {}).get("organization_id")
    ensure_org_access(store, user, organization_id)
    try:
        dc = data_calls.create_data_call(
            store,
            body or {},
            organization_id=organization_id,
            created_by_email=user.email,
            created_by_name=user.full_name,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if (body or {}).get("send_email"):
        dc = _send(store, dc)
    return {"success": True, "data_call": _redact(dc), "portal_url": data_calls.portal_url(dc)}


def _send(store: EntityStore, dc: dict) -> dict:
    try:
        return data_calls.send_data_call_notification(store, dc)
    except EmailNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


@router.post("/{data_call_id}/send")
def send_data_call(request: Request, data_call_id: str, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    dc = store.get(DATA_CALL_ENTITY, data_call_id)
    if not dc:
        raise HTTPException(status_code=404, detail="Data call not found")
    ensure_org_access(store, user, dc.get("organization_id"))
    updated = _send(store, dc)
    return {"success": True, "data_call": _redact(updated)}


def _portal_error(e: PortalError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


# Public endpoints: the access token is the credential.


@portal_router.get("/data-call")
def view_portal(token: str | None = None, id: str | None = None, store: EntityStore = Depends(get_entity_store)):
    try:
        return data_calls.open_portal(store, token, id)
    except PortalError as e:
        raise _portal_error(e) from e


@portal_router.post("/data-call/items")
def update_portal_item(
    body: dict, token: str | None = None, store: EntityStore = Depends(get_entity_store)
):
    try:
        return data_calls.update_portal_item(
            store,
            token or (body or {}).get("token"),
            (body or {}).get("data_call_id"),
            item_id=(body or {}).get("item_id"),
            status=(body or {}).get("status"),
            notes=(body or {}).get("notes"),
        )
    except PortalError as e:
        raise _portal_error(e) from e


@portal_router.post("/data-call/submit")
def submit_portal(body: dict, token: str | None = None, store: EntityStore = Depends(get_entity_store)):
    try:
        return data_calls.submit_portal(store, token or (body or {}).get("token"), (body or {}).get("data_call_id"))
    except PortalError as e:
        raise _portal_error(e) from e
