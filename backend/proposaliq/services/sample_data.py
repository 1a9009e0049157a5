from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from typing import Any

from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore
from .kanban_templates import KANBAN_ENTITY, rfp_15_column_board

log = get_logger("sample_data")

# Entity types hanging off an organization, deleted before the org itself.
ORG_SCOPED_ENTITIES = (
    KANBAN_ENTITY,
    "DataCallRequest",
    "TeamingPartner",
    "Subscription",
    "PromptExperiment",
    "PromptExperimentAssignment",
    "SolicitationDocument",
)


def _due_in(days: int) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


def _sample_proposals(org_id: str) -> list[dict[str, Any]]:
    return [
        {
            "organization_id": org_id,
            "proposal_name": "DoD Cloud Migration Initiative (SAMPLE)",
            "project_type": "RFP",
            "proposal_type_category": "RFP_15_COLUMN",
            "solicitation_number": "W52P1J-24-R-0001",
            "agency_name": "Department of Defense",
            "project_title": "Enterprise Cloud Migration Services",
            "due_date": _due_in(30),
            "contract_value": 5_000_000,
            "contract_value_type": "ceiling",
            "current_phase": "phase3",
            "status": "in_progress",
            "match_score": 85,
        },
        {
            "organization_id": org_id,
            "proposal_name": "GSA IT Support Services (SAMPLE)",
            "project_type": "RFP",
            "proposal_type_category": "RFP_15_COLUMN",
            "solicitation_number": "GS-00F-0001",
            "agency_name": "General Services Administration",
            "project_title": "Comprehensive IT Support and Maintenance",
            "due_date": _due_in(45),
            "contract_value": 2_500_000,
            "contract_value_type": "estimated",
            "current_phase": "phase2",
            "status": "draft",
            "match_score": 78,
        },
        {
            "organization_id": org_id,
            "proposal_name": "DHS Cybersecurity Assessment (SAMPLE)",
            "project_type": "RFQ",
            "proposal_type_category": "RFQ",
            "solicitation_number": "HSHQDC-24-Q-0001",
            "agency_name": "Department of Homeland Security",
            "project_title": "Cybersecurity Risk Assessment Services",
            "due_date": _due_in(15),
            "contract_value": 1_200_000,
            "contract_value_type": "target",
            "current_phase": "phase1",
            "status": "won",
            "match_score": 92,
        },
    ]


_SAMPLE_SECTIONS: list[tuple[str, str, str]] = [
    (
        "Executive Summary",
        "executive_summary",
        "<p>Acme Solutions Inc. is pleased to submit this proposal. We bring a decade of "
        "federal delivery experience and a team that has completed similar work on time "
        "and on budget.</p><p>Our approach reduces risk through phased delivery and "
        "continuous stakeholder engagement.</p>",
    ),
    (
        "Technical Approach",
        "technical_approach",
        "<p>Our technical approach leverages industry-leading cloud technologies and "
        "proven methodologies.</p><ul><li>Discovery and assessment</li><li>Migration "
        "waves with automated validation</li><li>Operations handover and training</li></ul>",
    ),
]


def generate_sample_data(store: EntityStore, *, user_email: str, user_name: str | None) -> dict[str, Any]:
    owned = store.filter("Organization", {"created_by": user_email})
    # Orgs without the flag count as real.
    if any(not o.get("is_sample_data") for o in owned):
        return {"success": True, "skipSampleData": True, "message": "User already has real organization"}

    existing = [o for o in owned if o.get("is_sample_data")]
    if existing:
        return {
            "success": True,
            "skipSampleData": True,
            "message": "Sample data already exists",
            "organization_id": existing[0]["id"],
        }

    org = store.create(
        "Organization",
        {
            "organization_name": "Acme Solutions Inc. (SAMPLE)",
            "organization_type": "corporate",
            "contact_name": user_name or "Sample User",
            "contact_email": user_email,
            "uei": "SAMPLEUEI123456",
            "cage_code": "1A2B3",
            "primary_naics": "541511",
            "certifications": ["8(a)", "SDVOSB"],
            "member_emails": [user_email],
            "is_primary": True,
            "onboarding_completed": False,
            "is_sample_data": True,
            "created_by": user_email,
        },
    )
    org_id = org["id"]

    store.create(
        "Subscription",
        {
            "organization_id": org_id,
            "plan_type": "free",
            "token_credits": 200_000,
            "token_credits_used": 15_000,
            "max_users": 1,
            "status": "active",
            "is_sample_data": True,
        },
    )

    proposals = [
        store.create("Proposal", {**p, "is_sample_data": True, "created_by": user_email})
        for p in _sample_proposals(org_id)
    ]
    sections = 0
    for proposal in proposals:
        for order, (name, stype, content) in enumerate(_SAMPLE_SECTIONS, start=1):
            store.create(
                "ProposalSection",
                {
                    "proposal_id": proposal["id"],
                    "organization_id": org_id,
                    "section_name": name,
                    "section_type": stype,
                    "content": content,
                    "order": order,
                    "status": "draft",
                    "is_sample_data": True,
                },
            )
            sections += 1

    store.create(
        "TeamingPartner",
        {
            "organization_id": org_id,
            "partner_name": "TechVentures LLC (SAMPLE)",
            "partner_type": "teaming_partner",
            "poc_name": "Jane Smith",
            "poc_email": "jane.smith@techventures.example",
            "certifications": ["HUBZone", "WOSB"],
            "core_capabilities": ["Cybersecurity", "Cloud Services"],
            "status": "active",
            "is_sample_data": True,
        },
    )
    board = store.create(KANBAN_ENTITY, {**rfp_15_column_board(org_id), "is_sample_data": True})

    log.info("sample_data_generated", organization_id=org_id, proposals=len(proposals), sections=sections)
    return {
        "success": True,
        "skipSampleData": False,
        "organization_id": org_id,
        "proposal_ids": [p["id"] for p in proposals],
        "sections_created": sections,
        "board_id": board["id"],
    }


def _collect_targets(store: EntityStore, org_id: str) -> list[tuple[str, str]]:
    targets: list[tuple[str, str]] = []
    for proposal in store.filter("Proposal", {"organization_id": org_id}):
        pid = proposal["id"]
        targets += [("ProposalSectionChunk", c["id"]) for c in store.filter("ProposalSectionChunk", {"proposal_id": pid})]
        targets += [("ProposalSection", s["id"]) for s in store.filter("ProposalSection", {"proposal_id": pid})]
        targets.append(("Proposal", pid))
    for entity in ORG_SCOPED_ENTITIES:
        targets += [(entity, r["id"]) for r in store.filter(entity, {"organization_id": org_id})]
    return targets


def delete_sample_data(store: EntityStore, *, user_email: str) -> dict[str, Any]:
    """
    Cascade-delete the caller's sample organizations. Deletes run in parallel;
    failures are reported and earlier deletes are not rolled back.
    """
    orgs = store.filter("Organization", {"created_by": user_email, "is_sample_data": True})
    deleted: dict[str, int] = {}
    errors: list[dict[str, Any]] = []

    def _delete(target: tuple[str, str]) -> tuple[str, str, Exception | None]:
        entity, rid = target
        try:
            store.delete(entity, rid)
            return entity, rid, None
        except Exception as e:  # noqa: BLE001
            return entity, rid, e

    with ThreadPoolExecutor(max_workers=8) as pool:
        for org in orgs:
            results = list(pool.map(_delete, _collect_targets(store, org["id"])))
            failed = False
            for entity, rid, err in results:
                if err is None:
                    deleted[entity] = deleted.get(entity, 0) + 1
                    continue
                failed = True
                log.error("sample_data_delete_failed", entity=entity, id=rid, error=str(err))
                errors.append({"entity": entity, "id": rid, "error": str(err)})

            # Keep the org when children failed so a retry can find them.
            if failed:
                continue
            try:
                store.delete("Organization", org["id"])
                deleted["Organization"] = deleted.get("Organization", 0) + 1
            except Exception as e:  # noqa: BLE001
                log.error("sample_data_delete_failed", entity="Organization", id=org["id"], error=str(e))
                errors.append({"entity": "Organization", "id": org["id"], "error": str(e)})

    log.info("sample_data_deleted", organizations=len(orgs), deleted=deleted, errors=len(errors))
    return {
        "success": not errors,
        "organizations_found": len(orgs),
        "deleted": deleted,
        "errors": errors,
    }
