from __future__ import annotations

from datetime import datetime, timezone

from proposaliq.services.similarity import (
    contract_values_similar,
    parse_amount,
    rank_candidates,
    score_candidate,
    title_words,
)

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _current(**kw):
    base = {
        "id": "cur",
        "proposal_name": "Highway Bridge Inspection Services",
        "agency_name": "Department of Transportation",
        "project_type": "Engineering",
        "contract_value": 1_000_000,
        "proposal_type_category": "RFP",
    }
    base.update(kw)
    return base


def test_full_match_scores_every_factor_uncapped():
    candidate = {
        "id": "c1",
        "proposal_name": "Regional Bridge Inspection Program",
        "agency_name": "department of transportation ",
        "project_type": "engineering",
        "status": "won",
        "contract_value": "$1,200,000",
        "proposal_type_category": "rfp",
        "created_date": "2025-01-01T00:00:00Z",
    }
    scored = score_candidate(_current(), candidate, now=NOW)
    assert scored.score == 40 + 30 + 20 + 10 + 15 + 5 + 5
    assert scored.is_win
    assert "Winning proposal" in scored.reasons
    assert "Similar title keywords: bridge, inspection" in scored.reasons


def test_submitted_bonus_and_status_bonus_toggle():
    candidate = {"id": "c2", "agency_name": "Department of Transportation", "status": "submitted"}
    assert score_candidate(_current(), candidate, now=NOW).score == 50
    assert score_candidate(_current(), candidate, now=NOW, include_status_bonus=False).score == 40


def test_blank_fields_never_match():
    scored = score_candidate({"id": "x"}, {"id": "y"}, now=NOW)
    assert scored.score == 0
    assert scored.reasons == []


def test_recency_window_is_two_years():
    old = {"id": "o", "created_date": "2022-01-01T00:00:00Z"}
    recent = {"id": "r", "created_date": "2024-01-01T00:00:00Z"}
    assert score_candidate(_current(), old, now=NOW).score == 0
    assert score_candidate(_current(), recent, now=NOW).score == 5


def test_contract_value_tolerance():
    assert contract_values_similar(100, 140)
    assert not contract_values_similar(100, 200)
    assert not contract_values_similar(None, 100)
    assert not contract_values_similar(0, 0)
    assert parse_amount("$2,500.50") == 2500.5
    assert parse_amount(True) is None


def test_title_words_ignore_short_tokens():
    assert title_words("The Big Bridge Repair") == {"bridge", "repair"}


def test_rank_puts_wins_first_then_score_and_filters():
    cur = _current()
    strong = {"id": "a", "agency_name": cur["agency_name"], "project_type": "Engineering", "status": "lost"}
    win = {"id": "b", "agency_name": cur["agency_name"], "status": "won"}
    weak = {"id": "c", "project_type": "Engineering"}
    excluded = {"id": "d", "agency_name": cur["agency_name"], "project_type": "Engineering", "status": "won"}
    itself = dict(cur)

    ranked = rank_candidates(cur, [strong, win, weak, excluded, itself], exclude_ids={"d"}, now=NOW)
    assert [r.proposal["id"] for r in ranked] == ["b", "a"]

    by_score = rank_candidates(cur, [strong, win], prioritize_wins=False, now=NOW)
    assert [r.proposal["id"] for r in by_score] == ["a", "b"]

    assert len(rank_candidates(cur, [strong, win], max_results=1, now=NOW)) == 1


def test_scored_proposal_to_dict_shape():
    scored = score_candidate(_current(), {"id": "z", "agency_name": "Department of Transportation"}, now=NOW)
    d = scored.to_dict()
    assert d["proposal_id"] == "z"
    assert d["relevance_score"] == 40
    assert d["is_win"] is False
    assert d["relevance_reasons"] == ["Same agency: Department of Transportation"]
