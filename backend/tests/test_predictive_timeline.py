from __future__ import annotations

from datetime import datetime, timezone

import pytest

from proposaliq.services.timeline import (
    MAX_DEADLINES,
    InvalidDueDate,
    generate_predictive_timeline,
    parse_due_date,
    template_for,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _timeline(store, due, **kw):
    return generate_predictive_timeline(
        store, proposal_id="p1", organization_id="org1", final_due_date=due, now=NOW, **kw
    )


@pytest.mark.parametrize(
    "days, template",
    [(90, "comprehensive"), (60, "comprehensive"), (59, "accelerated"), (30, "accelerated"),
     (29, "rapid"), (14, "rapid"), (13, "emergency"), (-3, "emergency")],
)
def test_template_thresholds(days, template):
    assert template_for(days) == template


def test_comprehensive_timeline_works_back_from_due_date(store):
    out = _timeline(store, "2026-03-02")
    meta = out["metadata"]
    assert meta["days_until_due"] == 60
    assert meta["timeline_template"] == "comprehensive"
    assert meta["proposal_type"] == "RFP"
    assert meta["historical_data_used"] is False

    deadlines = out["suggested_timeline"]["internal_deadlines"]
    assert len(deadlines) == 9
    assert deadlines[0]["name"] == "Initial Planning Complete"
    assert deadlines[0]["date"] == "2026-01-08T00:00:00Z"
    assert deadlines[-1]["name"] == "Final Package Assembly"
    assert deadlines[-1]["date"] == "2026-02-28T00:00:00Z"
    assert [d["date"] for d in deadlines] == sorted(d["date"] for d in deadlines)
    assert all(d["status"] == "pending" and d["ai_generated"] for d in deadlines)
    assert len({d["id"] for d in deadlines}) == 9

    milestones = out["suggested_timeline"]["key_milestones"]
    assert [m["name"] for m in milestones] == ["Kick-off Meeting", "Mid-Point Review", "Go/No-Go Decision"]
    assert milestones[0]["date"] == "2026-01-06T00:00:00Z"


def test_emergency_timeline_kicks_off_now(store):
    out = _timeline(store, "2026-01-11T00:00:00Z")
    assert out["metadata"]["timeline_template"] == "emergency"
    milestones = out["suggested_timeline"]["key_milestones"]
    assert milestones == [
        {
            "id": milestones[0]["id"],
            "name": "Emergency Kick-off",
            "date": "2026-01-01T00:00:00Z",
            "status": "pending",
            "notes": "Immediate team mobilization",
            "ai_generated": True,
        }
    ]
    assert len(out["suggested_timeline"]["internal_deadlines"]) == 4


def test_history_adds_deadline_names_used_at_least_twice(store):
    for _ in range(2):
        store.create(
            "Proposal",
            {
                "organization_id": "org1",
                "proposal_type_category": "RFP",
                "internal_deadlines": [{"name": "Orals Prep"}, {"name": "pink team review"}],
            },
        )
    store.create(
        "Proposal",
        {"organization_id": "org1", "proposal_type_category": "RFP", "internal_deadlines": [{"name": "Once"}]},
    )
    store.create(
        "Proposal",
        {"organization_id": "org1", "proposal_type_category": "SBIR", "internal_deadlines": [{"name": "Once"}]},
    )

    out = _timeline(store, "2026-03-02")
    deadlines = out["suggested_timeline"]["internal_deadlines"]
    names = [d["name"] for d in deadlines]
    assert len(deadlines) == 10
    assert "Orals Prep" in names and "Once" not in names
    assert names.count("Pink Team Review") == 1
    orals = next(d for d in deadlines if d["name"] == "Orals Prep")
    # 21 days before the due date: floor(60 * 0.35).
    assert orals["date"] == "2026-02-09T00:00:00Z"
    assert orals["notes"] == "Based on historical data from similar RFP proposals"
    assert out["metadata"]["historical_data_used"] is True


def test_history_never_grows_past_the_cap(store):
    names = [{"name": f"Gate {i}"} for i in range(8)]
    for _ in range(2):
        store.create("Proposal", {"organization_id": "org1", "proposal_type_category": "RFP", "internal_deadlines": names})

    out = _timeline(store, "2026-02-10")
    assert out["metadata"]["timeline_template"] == "accelerated"
    assert len(out["suggested_timeline"]["internal_deadlines"]) == MAX_DEADLINES


def test_parse_due_date():
    assert parse_due_date("2026-03-02").tzinfo is timezone.utc
    assert parse_due_date("2026-03-02T12:00:00Z").hour == 12
    with pytest.raises(InvalidDueDate):
        parse_due_date("next tuesday")


def test_predictive_timeline_endpoint(client, org):
    r = client.post(
        "/api/proposals",
        json={"organization_id": org["id"], "proposal_name": "Bridge", "proposal_type_category": "GSA"},
    )
    pid = r.json()["proposal"]["id"]

    r = client.post(f"/api/proposals/{pid}/predictive-timeline", json={"final_due_date": "2099-01-01"})
    assert r.status_code == 200
    assert r.json()["metadata"]["timeline_template"] == "comprehensive"
    assert r.json()["metadata"]["proposal_type"] == "GSA"

    r = client.post(f"/api/proposals/{pid}/predictive-timeline", json={"final_due_date": "soon"})
    assert r.status_code == 400

    r = client.post(f"/api/proposals/{pid}/predictive-timeline", json={})
    assert r.status_code == 400

    r = client.post("/api/proposals/missing/predictive-timeline", json={"final_due_date": "2099-01-01"})
    assert r.status_code == 404
