"""
Suggested internal deadlines and milestones for a proposal.

Dates are worked backwards from the final due date. The template depends on
how many days remain; deadline names the organization has reused on past
proposals of the same type are folded in.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore, new_id

log = get_logger("timeline")

MAX_DEADLINES = 12
HISTORY_MIN_USES = 2
HISTORY_PLACEMENT = 0.35

DaysBefore = Callable[[int], int]


def _after_start(n: int) -> DaysBefore:
    return lambda days: days - n


def _fraction(f: float) -> DaysBefore:
    return lambda days: math.floor(days * f)


def _before_due(n: int) -> DaysBefore:
    return lambda days: n


# (minimum days until due, template name, deadlines, milestones); first match wins.
_TEMPLATES: list[tuple[int | None, str, list[tuple[str, DaysBefore, str]], list[tuple[str, DaysBefore, str]]]] = [
    (60, "comprehensive", [
        ("Initial Planning Complete", _after_start(7),
         "Complete initial proposal planning, team assignments, and resource allocation"),
        ("Outline & Strategy Finalized", _fraction(0.85), "Finalize proposal outline, win themes, and overall strategy"),
        ("First Draft Complete", _fraction(0.65), "All sections should have first draft content"),
        ("Pink Team Review", _fraction(0.50), "Internal review for content completeness and compliance"),
        ("Pricing Complete", _fraction(0.40), "Final pricing reviewed and approved"),
        ("Red Team Review", _fraction(0.25), "Comprehensive review by independent team"),
        ("Final Edits & Formatting", _fraction(0.15), "Address all review comments, finalize formatting"),
        ("Executive Review & Approval", _before_due(5), "Final executive sign-off"),
        ("Final Package Assembly", _before_due(2), "Assemble all deliverables, prepare submission package"),
    ], [
        ("Kick-off Meeting", _after_start(5), "Team kick-off to align on strategy and assignments"),
        ("Mid-Point Review", _fraction(0.50), "Check progress at halfway point"),
        ("Go/No-Go Decision", _before_due(10), "Final decision on submission"),
    ]),
    (30, "accelerated", [
        ("Initial Planning Complete", _after_start(3), "Complete initial proposal planning and team assignments"),
        ("Outline Finalized", _fraction(0.80), "Finalize proposal outline and win themes"),
        ("First Draft Complete", _fraction(0.60), "All sections have first draft"),
        ("Internal Review", _fraction(0.40), "Comprehensive internal review"),
        ("Pricing Complete", _fraction(0.30), "Final pricing approved"),
        ("Final Edits", _fraction(0.20), "Address all comments, finalize content"),
        ("Executive Approval", _before_due(3), "Final executive sign-off"),
        ("Package Assembly", _before_due(1), "Prepare final submission package"),
    ], [
        ("Team Kick-off", _after_start(2), "Initial team alignment meeting"),
        ("Go/No-Go Decision", _before_due(7), "Final decision on submission"),
    ]),
    (14, "rapid", [
        ("Initial Planning", _after_start(2), "Quick planning and team alignment"),
        ("Draft Complete", _fraction(0.60), "Complete first pass of all content"),
        ("Pricing & Review", _fraction(0.40), "Complete pricing and internal review"),
        ("Final Polish", _before_due(3), "Final edits and formatting"),
        ("Package & Submit", _before_due(1), "Finalize submission package"),
    ], [
        ("Rapid Kick-off", _after_start(1), "Quick team alignment"),
    ]),
    (None, "emergency", [
        ("Emergency Planning", _after_start(1), "Immediate planning and resource allocation"),
        ("Draft Complete", _fraction(0.50), "Complete initial draft"),
        ("Review & Pricing", _fraction(0.30), "Quick review and pricing finalization"),
        ("Final Package", _before_due(1), "Assemble and submit"),
    ], [
        # Kick-off happens today.
        ("Emergency Kick-off", _after_start(0), "Immediate team mobilization"),
    ]),
]


class InvalidDueDate(ValueError):
    pass


def parse_due_date(value: Any) -> datetime:
    """ISO date or datetime; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value or "").strip())
        except ValueError as e:
            raise InvalidDueDate("Invalid date format for final_due_date") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _pick(days_until_due: int):
    return next(t for t in _TEMPLATES if t[0] is None or days_until_due >= t[0])


def template_for(days_until_due: int) -> str:
    return _pick(days_until_due)[1]


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _historical_names(store: EntityStore, organization_id: str, proposal_type: str, exclude_id: str) -> tuple[Counter, int]:
    """Count deadline names across past proposals that had a timeline."""
    counts: Counter = Counter()
    with_timeline = 0
    for p in store.filter("Proposal", {"organization_id": organization_id, "proposal_type_category": proposal_type}):
        deadlines = p.get("internal_deadlines") or []
        if p.get("id") == exclude_id or not deadlines:
            continue
        with_timeline += 1
        for d in deadlines:
            name = (d or {}).get("name") if isinstance(d, dict) else None
            if name:
                counts[str(name)] += 1
    return counts, with_timeline


def generate_predictive_timeline(
    store: EntityStore,
    *,
    proposal_id: str,
    organization_id: str,
    final_due_date: Any,
    proposal_type_category: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    due = parse_due_date(final_due_date)
    now = now or datetime.now(timezone.utc)
    days = math.ceil((due - now).total_seconds() / 86400)
    proposal_type = proposal_type_category or "RFP"

    _, template, deadline_specs, milestone_specs = _pick(days)

    def at(days_before: int) -> str:
        return _iso(due - timedelta(days=days_before))

    deadlines = [
        {
            "id": new_id(),
            "name": name,
            "date": at(offset(days)),
            "assigned_to_email": "",
            "assigned_to_name": "",
            "status": "pending",
            "notes": notes,
            "ai_generated": True,
        }
        for name, offset, notes in deadline_specs
    ]
    milestones = [
        {"id": new_id(), "name": name, "date": at(offset(days)), "status": "pending", "notes": notes, "ai_generated": True}
        for name, offset, notes in milestone_specs
    ]

    counts, with_timeline = _historical_names(store, organization_id, proposal_type, proposal_id)
    existing = {d["name"].lower() for d in deadlines}
    for name, uses in counts.items():
        if len(deadlines) >= MAX_DEADLINES:
            break
        if uses < HISTORY_MIN_USES or name.lower() in existing:
            continue
        existing.add(name.lower())
        deadlines.append(
            {
                "id": new_id(),
                "name": name,
                "date": at(math.floor(days * HISTORY_PLACEMENT)),
                "assigned_to_email": "",
                "assigned_to_name": "",
                "status": "pending",
                "notes": f"Based on historical data from similar {proposal_type} proposals",
                "ai_generated": True,
            }
        )

    # ISO strings in UTC sort chronologically; the sort is stable for ties.
    deadlines.sort(key=lambda d: d["date"])
    milestones.sort(key=lambda m: m["date"])

    log.info(
        "predictive_timeline_generated",
        proposal_id=proposal_id,
        template=template,
        days_until_due=days,
        deadlines=len(deadlines),
        historical=with_timeline,
    )
    return {
        "success": True,
        "suggested_timeline": {"internal_deadlines": deadlines, "key_milestones": milestones},
        "metadata": {
            "days_until_due": days,
            "proposal_type": proposal_type,
            "timeline_template": template,
            "historical_data_used": with_timeline > 0,
            "generated_at": _iso(now),
        },
    }
