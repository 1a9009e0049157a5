from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request

from ..repositories.base_repository import EntityStore
from .cognito import VerifiedUser


def current_user(request: Request) -> VerifiedUser:
    user = getattr(request.state, "user", None)
    if not isinstance(user, VerifiedUser):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def can_access_org(user: VerifiedUser, org: dict[str, Any]) -> bool:
    if user.is_admin:
        return True
    email = (user.email or "").lower()
    if not email:
        return False
    if str(org.get("created_by") or "").lower() == email:
        return True
    members = org.get("member_emails") or []
    return email in {str(m).lower() for m in members if m}


def ensure_org_access(
    store: EntityStore, user: VerifiedUser, organization_id: str | None
) -> dict[str, Any]:
    """Load the organization or raise 404/403."""
    if not organization_id:
        raise HTTPException(status_code=400, detail="organization_id is required")
    org = store.get("Organization", str(organization_id))
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    if not can_access_org(user, org):
        raise HTTPException(status_code=403, detail="Forbidden")
    return org


def load_proposal(
    store: EntityStore, user: VerifiedUser, proposal_id: str | None
) -> dict[str, Any]:
    """Load a proposal and check access to its organization."""
    if not proposal_id:
        raise HTTPException(status_code=400, detail="proposal_id is required")
    proposal = store.get("Proposal", str(proposal_id))
    if not proposal:
        raise HTTPException(status_code=404, detail="Proposal not found")
    ensure_org_access(store, user, proposal.get("organization_id"))
    return proposal
