from __future__ import annotations

import pytest

from proposaliq.ai.client import AiMeta
from proposaliq.services import proposal_writer
from proposaliq.services.proposal_writer import (
    AI_CONFIG_ENTITY,
    WriterContext,
    compliance_issues,
    confidence_score,
    get_ai_configuration,
    write_section,
)

EMAIL = "owner@example.com"


@pytest.fixture
def drafts(monkeypatch):
    """Queue of draft texts returned by the model; records each prompt."""
    state = {"replies": [], "prompts": [], "temperatures": []}

    def _fake(*, purpose, response_model, messages, temperature=0.2, **_kw):
        assert purpose == "section_drafting"
        state["prompts"].append(messages[0]["content"])
        state["temperatures"].append(temperature)
        return (
            response_model.model_validate({"content": state["replies"].pop(0)}),
            AiMeta(purpose=purpose, model="gpt-4o", attempts=1, used_response_format="chat_json_schema"),
        )

    monkeypatch.setattr(proposal_writer, "call_json", _fake)
    return state


def _proposal(store, **extra):
    return store.create(
        "Proposal",
        {"organization_id": "org1", "proposal_name": "Bridge Inspection", "agency_name": "DOT", **extra},
    )


def test_draft_without_configuration_or_context_uses_defaults(store, drafts):
    proposal = _proposal(store)
    drafts["replies"].append("word " * 50)

    out = write_section(store, proposal, "executive_summary", user_email=EMAIL)

    assert out["word_count"] == 50
    assert out["confidence_score"] == 40
    assert out["compliance_issues"] == [
        {"type": "word_count", "message": "Content is shorter than minimum (50 vs 300)", "severity": "low"}
    ]
    assert out["metadata"]["ai_config_used"] == "Built-in defaults"
    assert out["metadata"]["context_summary"] == (
        "Used 0 sources: 0 solicitation docs, 0 reference proposals, 0 content library items"
    )

    section = store.get("ProposalSection", out["section_id"])
    assert section["status"] == "ai_generated"
    assert section["section_type"] == "executive_summary"
    assert section["order"] == 1
    assert section["ai_generation_metadata"]["user_email"] == EMAIL
    assert section["ai_generation_metadata"]["model"] == "gpt-4o"
    assert "Now generate the executive_summary section:" in section["ai_prompt_used"]
    assert "professional tone" in drafts["prompts"][0]


def test_draft_with_full_context_and_guardrails(store, drafts):
    ref = store.create("Proposal", {"organization_id": "org1", "proposal_name": "Old bridge win", "status": "won"})
    store.create(
        "ProposalSection",
        {"proposal_id": ref["id"], "section_name": "Approach", "section_type": "technical_approach",
         "content": "<p>Drone-assisted inspection of every span.</p>"},
    )
    proposal = _proposal(store, reference_proposal_ids=[ref["id"]])
    store.create(
        "SolicitationDocument",
        {"proposal_id": proposal["id"], "document_name": "PWS.pdf", "rag_priority_score": 90,
         "rag_extracted_data": {"summary": "Inspect 40 bridges.", "key_requirements": ["NBIS certified leads"]}},
    )
    store.create(
        "ProposalResource",
        {"organization_id": "org1", "resource_type": "boilerplate_text", "title": "QA",
         "content_category": "quality", "boilerplate_content": "Our QA program is ISO 9001 certified."},
    )
    store.create(
        AI_CONFIG_ENTITY,
        {"organization_id": "org1", "is_active": True, "config_name": "Acme writer", "temperature": 0.1,
         "default_word_count_min": 200, "citation_style": "APA",
         "guardrails": {"forbidden_phrases": ["best in class"], "required_disclaimers": ["Pricing is estimated."]}},
    )
    drafts["replies"].append("We are best in class. " + "inspection " * 245)

    out = write_section(
        store, proposal, "technical_approach", user_email=EMAIL, generation_params={"tone": "confident"}
    )

    assert out["word_count"] == 250
    assert out["confidence_score"] == 100
    assert [i["type"] for i in out["compliance_issues"]] == ["forbidden_phrase", "missing_disclaimer"]
    assert out["compliance_issues"][0]["severity"] == "high"
    assert out["metadata"]["ai_config_used"] == "Acme writer"
    assert [s["type"] for s in out["metadata"]["sources_used"]] == [
        "solicitation", "reference_proposal", "content_library"
    ]
    assert drafts["temperatures"] == [0.1]

    prompt = drafts["prompts"][0]
    assert "confident tone" in prompt
    assert "SOLICITATION REQUIREMENTS:\nDocument: PWS.pdf\nSummary: Inspect 40 bridges.\n- NBIS certified leads" in prompt
    assert "REFERENCE EXAMPLES FROM WINNING PROPOSALS:" in prompt
    assert "Drone-assisted inspection of every span." in prompt
    assert "[Boilerplate - quality]: Our QA program is ISO 9001 certified...." in prompt
    assert "IMPORTANT: Never use these phrases: best in class" in prompt
    assert "Use APA citation style when referencing sources." in prompt


def test_regenerating_updates_the_existing_section(store, drafts):
    proposal = _proposal(store)
    store.create("ProposalSection", {"proposal_id": proposal["id"], "section_name": "Intro", "order": 1})
    drafts["replies"] += ["first draft", "second draft"]

    first = write_section(store, proposal, "staffing_plan", user_email=EMAIL)
    second = write_section(store, proposal, "staffing_plan", user_email=EMAIL, agent_triggered=True)

    assert first["section_id"] == second["section_id"]
    assert store.count("ProposalSection") == 2
    section = store.get("ProposalSection", second["section_id"])
    assert section["content"] == "second draft"
    assert section["order"] == 2
    assert section["ai_generation_metadata"]["agent_triggered"] is True


def test_configuration_falls_back_to_active_global_default(store):
    store.create(AI_CONFIG_ENTITY, {"organization_id": "org1", "is_active": False, "config_name": "Old"})
    store.create(AI_CONFIG_ENTITY, {"is_global_default": True, "is_active": True, "config_name": "Platform"})

    config = get_ai_configuration(store, "org1")
    assert config["config_name"] == "Platform"
    assert config["default_word_count_max"] == 800


def test_confidence_is_clamped_and_counts_sources():
    ctx = WriterContext(solicitation="x", references="y", library="z", sources=[{}, {}, {}])
    assert confidence_score("word " * 300, ctx) == 100
    assert confidence_score("", WriterContext()) == 40
    assert confidence_score("word " * 150, WriterContext()) == 50


def test_compliance_phrase_match_ignores_case():
    config = {"guardrails": {"forbidden_phrases": ["Synergy"]}, "default_word_count_min": 0}
    assert compliance_issues("real synergy here", config)[0]["type"] == "forbidden_phrase"
    assert compliance_issues("plain text", config) == []


def test_generate_section_endpoint(client, store, org, drafts):
    r = client.post("/api/proposals", json={"organization_id": org["id"], "proposal_name": "Bridge"})
    pid = r.json()["proposal"]["id"]
    drafts["replies"].append("Management approach text.")

    r = client.post("/api/rag/generate-section", json={"proposal_id": pid, "section_type": "management_plan"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["content"] == "Management approach text."
    assert store.get("ProposalSection", body["section_id"])["section_type"] == "management_plan"

    r = client.post("/api/rag/generate-section", json={"proposal_id": pid})
    assert r.status_code == 400

    r = client.post("/api/rag/generate-section", json={"proposal_id": "missing", "section_type": "x"})
    assert r.status_code == 404
