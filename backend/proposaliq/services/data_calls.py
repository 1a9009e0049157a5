from __future__ import annotations

import hmac
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

from ..infrastructure.email_ses import send_email
from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore, now_iso
from ..settings import settings
from .similarity import parse_iso

log = get_logger("data_calls")

DATA_CALL_ENTITY = "DataCallRequest"

ITEM_STATUSES = ("pending", "in_progress", "completed", "not_applicable")
PORTAL_ITEM_STATUSES = ("in_progress", "completed", "not_applicable")
DONE_STATUSES = ("completed", "not_applicable")
PRIORITIES = ("low", "medium", "high", "urgent")


class PortalError(Exception):
    def __init__(self, message: str, *, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def new_access_token() -> str:
    return secrets.token_urlsafe(32)


def _normalize_items(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list) or not raw:
        raise ValueError("checklist_items must be a non-empty list")
    items: list[dict[str, Any]] = []
    for it in raw:
        if not isinstance(it, dict):
            raise ValueError("checklist_items entries must be objects")
        label = str(it.get("item_label") or "").strip()
        if not label:
            raise ValueError("Each checklist item needs an item_label")
        status = str(it.get("status") or "pending")
        items.append(
            {
                "id": str(it.get("id") or uuid.uuid4().hex),
                "item_label": label,
                "item_description": it.get("item_description") or "",
                "is_required": bool(it.get("is_required", True)),
                "status": status if status in ITEM_STATUSES else "pending",
                "submitted_notes": it.get("submitted_notes"),
                "uploaded_files": list(it.get("uploaded_files") or []),
            }
        )
    return items


def progress(items: list[dict[str, Any]]) -> dict[str, Any]:
    total = len(items)
    done = sum(1 for it in items if it.get("status") in DONE_STATUSES)
    all_required = all(it.get("status") in DONE_STATUSES for it in items if it.get("is_required"))
    return {
        "completed_items": done,
        "total_items": total,
        "progress_percentage": round(done * 100 / total) if total else 0,
        "all_required_completed": all_required,
    }


def portal_url(data_call: dict[str, Any]) -> str:
    base = (settings.frontend_base_url or "").rstrip("/")
    query = urlencode({"token": data_call.get("access_token"), "id": data_call.get("id")})
    return f"{base}/data-call-portal?{query}"


def create_data_call(
    store: EntityStore,
    data: dict[str, Any],
    *,
    organization_id: str,
    created_by_email: str | None,
    created_by_name: str | None,
) -> dict[str, Any]:
    title = str(data.get("request_title") or "").strip()
    if not title:
        raise ValueError("request_title is required")
    recipient = str(data.get("recipient_email") or "").strip().lower()
    if not recipient or "@" not in recipient:
        raise ValueError("recipient_email is required")
    priority = str(data.get("priority") or "medium").strip().lower()
    if priority not in PRIORITIES:
        raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")

    ttl_days = max(1, int(data.get("token_ttl_days") or settings.data_call_token_ttl_days))
    expires = datetime.now(timezone.utc) + timedelta(days=ttl_days)

    return store.create(
        DATA_CALL_ENTITY,
        {
            "organization_id": organization_id,
            "proposal_id": data.get("proposal_id"),
            "request_title": title,
            "request_description": data.get("request_description") or "",
            "recipient_email": recipient,
            "recipient_name": data.get("recipient_name"),
            "due_date": data.get("due_date"),
            "priority": priority,
            "checklist_items": _normalize_items(data.get("checklist_items")),
            "access_token": new_access_token(),
            "token_expires_at": expires.isoformat().replace("+00:00", "Z"),
            "overall_status": "draft",
            "portal_accessed_count": 0,
            "created_by": created_by_email,
            "created_by_email": created_by_email,
            "created_by_name": created_by_name,
        },
    )


def send_data_call_notification(store: EntityStore, data_call: dict[str, Any]) -> dict[str, Any]:
    link = portal_url(data_call)
    requester = data_call.get("created_by_name") or data_call.get("created_by_email") or "Your proposal team"
    due = data_call.get("due_date") or "No deadline"
    lines = [
        f"Hello {data_call.get('recipient_name') or ''}".rstrip() + ",",
        "",
        f"{requester} has requested information for: {data_call.get('request_title')}",
        f"Due: {due}",
        "",
        f"{len(data_call.get('checklist_items') or [])} item(s) are requested. Open the secure portal to respond:",
        link,
        "",
        "This link is personal to you. Do not forward it.",
    ]
    result = send_email(
        to_email=str(data_call.get("recipient_email") or ""),
        subject=f"Data request: {data_call.get('request_title')}",
        text="\n".join(lines),
    )
    updated = store.update(
        DATA_CALL_ENTITY,
        data_call["id"],
        {
            "overall_status": "sent" if data_call.get("overall_status") in (None, "draft") else data_call["overall_status"],
            "sent_date": now_iso(),
            "email_sent_count": int(data_call.get("email_sent_count") or 0) + 1,
        },
    )
    log.info("data_call_notification_sent", data_call_id=data_call["id"], message_id=result.get("message_id"))
    return updated or data_call


def resolve_portal(store: EntityStore, token: str | None, data_call_id: str | None) -> dict[str, Any]:
    """Validate an access link; raises PortalError (400 malformed, 403 denied)."""
    if not token or not data_call_id:
        raise PortalError("Invalid access link. Please use the link provided in your email.", status_code=400)

    dc = store.get(DATA_CALL_ENTITY, str(data_call_id))
    expected = str((dc or {}).get("access_token") or "")
    if not dc or not expected or not hmac.compare_digest(expected.encode(), str(token).encode()):
        log.warning("data_call_portal_denied", data_call_id=data_call_id, reason="invalid_token")
        raise PortalError(
            "Invalid or expired access token. Please contact the sender for a new link.", status_code=403
        )

    expires = parse_iso(dc.get("token_expires_at"))
    if expires and expires < datetime.now(timezone.utc):
        log.info("data_call_portal_denied", data_call_id=data_call_id, reason="expired")
        raise PortalError(
            "This access link has expired. Please contact the sender for a new link.", status_code=403
        )
    return dc


def portal_view(dc: dict[str, Any]) -> dict[str, Any]:
    items = dc.get("checklist_items") or []
    return {
        "success": True,
        "data_call": {
            "id": dc.get("id"),
            "request_title": dc.get("request_title"),
            "request_description": dc.get("request_description"),
            "requested_by": dc.get("created_by_name") or dc.get("created_by_email"),
            "due_date": dc.get("due_date"),
            "priority": dc.get("priority") or "medium",
            "overall_status": dc.get("overall_status"),
            "checklist_items": items,
        },
        **progress(items),
    }


def open_portal(store: EntityStore, token: str | None, data_call_id: str | None) -> dict[str, Any]:
    dc = resolve_portal(store, token, data_call_id)
    updated = store.update(
        DATA_CALL_ENTITY,
        dc["id"],
        {
            "portal_accessed_count": int(dc.get("portal_accessed_count") or 0) + 1,
            "last_portal_access": now_iso(),
        },
    )
    return portal_view(updated or dc)


def _ensure_open(dc: dict[str, Any]) -> None:
    if dc.get("overall_status") == "completed":
        raise PortalError("This data call has already been submitted.", status_code=409)


def update_portal_item(
    store: EntityStore,
    token: str | None,
    data_call_id: str | None,
    *,
    item_id: str | None,
    status: str | None,
    notes: str | None = None,
) -> dict[str, Any]:
    dc = resolve_portal(store, token, data_call_id)
    _ensure_open(dc)
    if status not in PORTAL_ITEM_STATUSES:
        raise PortalError(f"status must be one of {', '.join(PORTAL_ITEM_STATUSES)}", status_code=400)

    items = [dict(it) for it in dc.get("checklist_items") or []]
    target = next((it for it in items if it.get("id") == item_id), None)
    if target is None:
        raise PortalError("Checklist item not found", status_code=404)

    target["status"] = status
    if notes is not None:
        target["submitted_notes"] = str(notes)[:5000]
    target["completed_date"] = now_iso() if status in DONE_STATUSES else None

    updates: dict[str, Any] = {"checklist_items": items}
    if dc.get("overall_status") in (None, "draft", "sent"):
        updates["overall_status"] = "in_progress"
    updated = store.update(DATA_CALL_ENTITY, dc["id"], updates)
    log.info("data_call_item_updated", data_call_id=dc["id"], item_id=item_id, status=status)
    return portal_view(updated or {**dc, **updates})


def submit_portal(store: EntityStore, token: str | None, data_call_id: str | None) -> dict[str, Any]:
    dc = resolve_portal(store, token, data_call_id)
    _ensure_open(dc)
    items = dc.get("checklist_items") or []
    if not progress(items)["all_required_completed"]:
        raise PortalError("All required items must be completed or marked not applicable", status_code=400)

    updated = store.update(
        DATA_CALL_ENTITY,
        dc["id"],
        {"overall_status": "completed", "completed_date": now_iso()},
    )
    log.info("data_call_submitted", data_call_id=dc["id"])
    return portal_view(updated or dc)
