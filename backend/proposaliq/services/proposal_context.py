from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore
from .chunking import html_to_text, normalize_text
from .similarity import CANDIDATE_POOL_LIMIT, ScoredProposal, parse_amount, score_candidate

log = get_logger("proposal_context")

CHARS_PER_TOKEN = 4
LLM_TOKEN_LIMITS = {
    "gemini": 100_000,
    "claude": 100_000,
    "chatgpt": 50_000,
    "gpt-4": 50_000,
}
DEFAULT_TOKEN_LIMIT = 30_000
MAX_AUTO_REFERENCES = 5


def token_limit(llm_provider: str | None, max_tokens: int | None) -> int:
    if max_tokens:
        return max(1, int(max_tokens))
    return LLM_TOKEN_LIMITS.get(str(llm_provider or "").strip().lower(), DEFAULT_TOKEN_LIMIT)


def _money(v: Any) -> str | None:
    amount = parse_amount(v)
    return f"${amount:,.0f}" if amount else None


def _section_text(section: dict[str, Any], max_len: int) -> str:
    text = normalize_text(html_to_text(section.get("content") or ""))
    if len(text) > max_len:
        return text[:max_len] + "... [truncated]"
    return text


def _header(current: dict[str, Any], target_section_type: str | None) -> str:
    lines = [
        "# CURRENT PROPOSAL CONTEXT",
        "",
        f"Proposal Name: {current.get('proposal_name')}",
        f"Project Title: {current.get('project_title') or 'N/A'}",
        f"Agency: {current.get('agency_name') or 'N/A'}",
        f"Solicitation: {current.get('solicitation_number') or 'N/A'}",
        f"Type: {current.get('project_type') or 'N/A'}",
    ]
    value = _money(current.get("contract_value"))
    if value:
        lines.append(f"Contract Value: {value}")
    if target_section_type:
        lines.append(f"Target Section Type: {target_section_type}")
    return "\n".join(lines) + "\n\n"


def _reference_block(
    n: int,
    scored: ScoredProposal,
    sections: list[dict[str, Any]],
    *,
    target_section_type: str | None,
    max_section_len: int,
) -> str:
    p = scored.proposal
    lines = [
        f"## Reference Proposal {n}: {p.get('proposal_name')}",
        f"**Reference ID:** REF{n}",
        f"**Relevance Score:** {scored.score} ({', '.join(scored.reasons) or 'no shared signals'})",
        f"**Status:** {p.get('status') or 'unknown'}",
        f"**Agency:** {p.get('agency_name') or 'N/A'}",
    ]
    value = _money(p.get("contract_value"))
    if value:
        lines.append(f"**Contract Value:** {value}")
    lines.append("")

    if target_section_type:
        sections = [
            s for s in sections
            if s.get("section_type") in (target_section_type, "custom") or not s.get("section_type")
        ]
    bodies = [(s, _section_text(s, max_section_len)) for s in sections]
    bodies = [(s, t) for s, t in bodies if t]
    if bodies:
        lines.append(f"### Proposal Sections ({len(bodies)} relevant)")
        lines.append("")
        for s, text in bodies:
            lines.append(f"#### {s.get('section_name') or 'Untitled'} ({s.get('section_type') or 'unknown'})")
            lines.append(text)
            lines.append("")
    return "\n".join(lines) + "\n"


def _instructions(enable_citations: bool, target_section_type: str | None) -> str:
    lines = [
        "",
        "# AI WRITING INSTRUCTIONS",
        "",
        "Use the above reference material to inform your writing. Draw on successful "
        "structures, persuasive language and technical approaches.",
    ]
    if enable_citations:
        lines += [
            "",
            "**CITATION REQUIREMENTS:**",
            "When you significantly draw from a reference proposal, add an inline citation "
            "such as [REF1: Technical Approach] at the end of the influenced paragraph. "
            "Reference numbers correspond to the references above.",
        ]
    lines += [
        "",
        "Ensure all generated content is:",
        "1. **Original** - Not copied directly from references",
        "2. **Specific** - Tailored to the current proposal",
        "3. **Traceable** - Cite references you relied on: [REF#: Section]",
        "4. **Professional** - Government proposal tone",
    ]
    if target_section_type:
        lines.append(f"5. **Focused** - Specifically for the {target_section_type.replace('_', ' ')} section")
    return "\n".join(lines) + "\n"


def build_proposal_context(
    store: EntityStore,
    current: dict[str, Any],
    *,
    reference_proposal_ids: list[str] | None = None,
    target_section_type: str | None = None,
    max_tokens: int | None = None,
    llm_provider: str | None = "gemini",
    prioritize_winning: bool = True,
    enable_citations: bool = True,
) -> dict[str, Any]:
    limit = token_limit(llm_provider, max_tokens)
    max_chars = limit * CHARS_PER_TOKEN
    max_section_len = 5000 if limit > 50_000 else 2000
    org_id = current.get("organization_id")

    ref_ids = [str(r) for r in reference_proposal_ids or [] if r and str(r) != str(current.get("id"))]
    missing: list[str] = []
    with ThreadPoolExecutor(max_workers=8) as pool:
        if ref_ids:
            fetched = list(pool.map(lambda rid: store.get("Proposal", rid), ref_ids))
            refs = []
            for rid, p in zip(ref_ids, fetched):
                # References outside the caller's organization are treated as missing.
                if p and p.get("organization_id") == org_id:
                    refs.append(p)
                else:
                    missing.append(rid)
        else:
            refs = [
                p
                for p in store.filter("Proposal", {"organization_id": org_id}, limit=CANDIDATE_POOL_LIMIT)
                if p.get("id") != current.get("id")
            ]

        scored = [score_candidate(current, p, include_status_bonus=prioritize_winning) for p in refs]
        scored.sort(key=lambda s: s.score, reverse=True)
        if not ref_ids:
            scored = [s for s in scored if s.score > 0][:MAX_AUTO_REFERENCES]

        section_lists = list(
            pool.map(
                lambda s: store.filter("ProposalSection", {"proposal_id": s.proposal["id"]}, sort="order"),
                scored,
            )
        )

    context = _header(current, target_section_type)
    context += "# REFERENCE MATERIAL FROM PAST PROPOSALS\n\n"
    context += (
        f"The following content is extracted from {len(scored)} past proposal(s), ranked by relevance. "
        "Use it for structure, language and approach; all new content must be original and "
        "tailored to the current proposal.\n\n"
    )

    instructions = _instructions(enable_citations, target_section_type)
    # The instructions block always ships, so its length counts against the budget.
    budget = max_chars - len(instructions)
    truncated = False
    sources: list[dict[str, Any]] = []
    for i, (s, sections) in enumerate(zip(scored, section_lists), start=1):
        block = _reference_block(
            i, s, sections, target_section_type=target_section_type, max_section_len=max_section_len
        )
        if len(context) + len(block) + len("---\n\n") > budget:
            truncated = True
            break
        context += block + "---\n\n"
        sources.append(
            {
                "proposal_id": s.proposal.get("id"),
                "proposal_name": s.proposal.get("proposal_name"),
                "status": s.proposal.get("status"),
                "agency": s.proposal.get("agency_name"),
                "relevance_score": s.score,
                "relevance_reasons": s.reasons,
                "reference_number": i,
            }
        )

    context += instructions
    estimated = math.ceil(len(context) / CHARS_PER_TOKEN)
    log.info(
        "proposal_context_built",
        proposal_id=current.get("id"),
        references=len(sources),
        estimated_tokens=estimated,
        truncated=truncated,
    )
    return {
        "success": True,
        "status": "success",
        "context": context,
        "metadata": {
            "references_requested": len(ref_ids) if ref_ids else None,
            "references_included": len(sources),
            "references_missing": missing,
            "estimated_tokens": estimated,
            "max_tokens": limit,
            "truncated": truncated,
            "sources": sources,
        },
    }
