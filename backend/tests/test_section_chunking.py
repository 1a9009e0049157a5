from __future__ import annotations

import pytest

from proposaliq.services import chunking
from proposaliq.services.chunking import (
    PARAGRAPH_SEPARATOR,
    chunk_content,
    heuristic_keywords,
    heuristic_summary,
    html_to_text,
    normalize_text,
    pack_paragraphs,
)


def _para(n: int, word: str = "alpha") -> str:
    return " ".join([word] * n)


def test_html_is_flattened_into_paragraphs():
    html = "<h2>Scope</h2><p>First&nbsp;para.</p><script>x()</script><p>Second<br>line</p>"
    text = normalize_text(html_to_text(html))
    assert text == "Scope\n\nFirst para.\n\nSecond\nline"


def test_table_cells_and_definition_lists_stay_separate_words():
    normalized, chunks = chunk_content(
        "<table><caption>Rates</caption><tr><th>Name</th><th>Value</th></tr>"
        "<tr><td>Analyst</td><td>$120</td></tr></table><dl><dt>Term</dt><dd>Meaning</dd></dl>"
    )
    assert normalized == "Rates\n\nName Value\n\nAnalyst $120\n\nTerm\n\nMeaning"
    assert "Name" in normalized.split()
    assert sum(c.word_count for c in chunks) == 7


def test_normalize_collapses_blank_runs_and_whitespace():
    assert normalize_text("  a \t b\r\n\r\n\r\n\r\nc  ") == "a b\n\nc"


def test_packing_respects_target_and_paragraph_limits():
    paras = [_para(50) for _ in range(7)]
    chunks = pack_paragraphs(paras)
    assert [c.paragraph_count for c in chunks] == [3, 3, 1]
    assert [c.index for c in chunks] == [0, 1, 2]

    big = [_para(150), _para(100), _para(10)]
    chunks = pack_paragraphs(big)
    # 150 + 100 reaches the target, so the third paragraph starts a new chunk.
    assert [c.word_count for c in chunks] == [250, 10]


def test_packing_never_exceeds_max_words_except_single_paragraph():
    paras = [_para(150), _para(300), _para(500), _para(20)]
    chunks = pack_paragraphs(paras)
    assert [c.word_count for c in chunks] == [150, 300, 500, 20]
    assert all(c.word_count <= 400 or c.paragraph_count == 1 for c in chunks)


def test_offsets_index_into_normalized_text():
    content = "<p>One two three.</p><p>Four five.</p>" + "".join(f"<p>{_para(120, 'beta')}</p>" for _ in range(3))
    normalized, chunks = chunk_content(content)
    assert len(chunks) >= 2
    for c in chunks:
        assert normalized[c.start_offset : c.end_offset] == c.text
    assert PARAGRAPH_SEPARATOR.join(c.text for c in chunks) == normalized


def test_empty_content_has_no_chunks():
    assert chunk_content("") == ("", [])
    assert chunk_content("<p>  </p>")[1] == []


def test_heuristics():
    assert heuristic_summary("We will deliver. Then more.") == "We will deliver."
    assert heuristic_summary("x" * 300).endswith("...")
    kws = heuristic_keywords("Bridge inspection and bridge repair for the bridge program")
    assert kws[0] == "bridge"
    assert "the" not in kws and "and" not in kws


@pytest.fixture
def offline_ai(monkeypatch):
    from proposaliq.ai import client as ai_client

    monkeypatch.setattr(ai_client.settings, "openai_api_key", None)


def test_chunk_proposal_sections_replaces_previous_chunks(store, offline_ai):
    proposal = store.create("Proposal", {"organization_id": "org1", "proposal_name": "P"})
    s1 = store.create(
        "ProposalSection",
        {"proposal_id": proposal["id"], "section_name": "Approach", "order": 1, "content": "<p>We build bridges.</p>"},
    )
    store.create(
        "ProposalSection",
        {"proposal_id": proposal["id"], "section_name": "Empty", "order": 2, "content": ""},
    )
    store.create("ProposalSectionChunk", {"section_id": s1["id"], "chunk_text": "stale"})

    out = chunking.chunk_proposal_sections(store, proposal)
    assert out["success"] is True
    assert out["sections_processed"] == 2
    assert out["chunks_created"] == 1
    assert [s["chunks"] for s in out["sections"]] == [1, 0]

    chunks = store.filter("ProposalSectionChunk", {"section_id": s1["id"]})
    assert len(chunks) == 1
    assert chunks[0]["chunk_text"] == "We build bridges."
    assert chunks[0]["summary"] == "We build bridges."
    assert chunks[0]["organization_id"] == "org1"


def test_chunk_proposal_sections_limits_to_requested_ids(store, offline_ai):
    proposal = store.create("Proposal", {"organization_id": "org1"})
    a = store.create("ProposalSection", {"proposal_id": proposal["id"], "order": 1, "content": "A text."})
    store.create("ProposalSection", {"proposal_id": proposal["id"], "order": 2, "content": "B text."})

    out = chunking.chunk_proposal_sections(store, proposal, section_ids=[a["id"]])
    assert out["sections_processed"] == 1
    assert out["sections"][0]["section_id"] == a["id"]
