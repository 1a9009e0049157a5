"""
AI drafting of a single proposal section.

The organization's active AI configuration (or the global default) decides
tone, length, guardrails and which context sources are used. Context comes
from ingested solicitation documents, reference proposals (through
`build_proposal_context`) and boilerplate from the content library. The draft
is scored, checked against the guardrails and upserted as the proposal's
section of that type.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from ..ai.client import call_json
from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore, now_iso
from .chunking import html_to_text
from .doc_ingestion import DOCUMENT_ENTITY
from .proposal_context import build_proposal_context

log = get_logger("proposal_writer")

AI_CONFIG_ENTITY = "AiConfiguration"
MAX_REFERENCE_PROPOSALS = 5
MAX_LIBRARY_ITEMS = 3
LIBRARY_EXCERPT_CHARS = 300
REFERENCE_CONTEXT_TOKENS = 6000

# Used when neither the organization nor the platform has an active configuration.
DEFAULT_AI_CONFIG: dict[str, Any] = {
    "id": None,
    "config_name": "Built-in defaults",
    "llm_provider": "openai",
    "default_tone": "professional",
    "default_word_count_min": 300,
    "default_word_count_max": 800,
    "reading_level": "professional",
    "temperature": 0.4,
    "system_instructions": "You are an expert government proposal writer.",
    "core_prompt_template": (
        "Generate a {section_type} section with a {tone} tone at a {reading_level} reading level. "
        "Aim for {word_count_min} to {word_count_max} words."
    ),
    "use_solicitation_parsing": True,
    "use_rag": True,
    "use_content_library": True,
    "enable_confidence_scoring": True,
    "enable_compliance_check": True,
    "citation_style": "none",
    "guardrails": {},
    "context_priority_weights": {},
}


class SectionDraft(BaseModel):
    content: str = Field(..., description="The section text, plain paragraphs separated by blank lines")


@dataclass
class WriterContext:
    solicitation: str = ""
    references: str = ""
    library: str = ""
    sources: list[dict[str, Any]] = field(default_factory=list)
    reference_proposals: int = 0
    truncated: bool = False

    @property
    def summary(self) -> str:
        by_type = [s.get("type") for s in self.sources]
        return (
            f"Used {len(self.sources)} sources: "
            f"{by_type.count('solicitation')} solicitation docs, "
            f"{by_type.count('reference_proposal')} reference proposals, "
            f"{by_type.count('content_library')} content library items"
        )


def count_words(text: str | None) -> int:
    return len(str(text or "").split())


def get_ai_configuration(store: EntityStore, organization_id: str | None) -> dict[str, Any]:
    if organization_id:
        found = store.filter(AI_CONFIG_ENTITY, {"organization_id": organization_id, "is_active": True}, limit=1)
        if found:
            return {**DEFAULT_AI_CONFIG, **found[0]}
    found = store.filter(AI_CONFIG_ENTITY, {"is_global_default": True, "is_active": True}, limit=1)
    if found:
        return {**DEFAULT_AI_CONFIG, **found[0]}
    log.warning("ai_config_missing", organization_id=organization_id)
    return dict(DEFAULT_AI_CONFIG)


def effective_config(config: dict[str, Any], params: dict[str, Any] | None) -> dict[str, Any]:
    params = params or {}
    return {
        **config,
        "tone": params.get("tone") or config.get("default_tone"),
        "word_count_min": params.get("word_count_min") or config.get("default_word_count_min"),
        "word_count_max": params.get("word_count_max") or config.get("default_word_count_max"),
        "reading_level": params.get("reading_level") or config.get("reading_level"),
    }


def _weight(config: dict[str, Any], key: str, default: float) -> float:
    return float((config.get("context_priority_weights") or {}).get(key) or default)


def _solicitation_text(doc: dict[str, Any]) -> str:
    name = doc.get("document_name") or doc.get("file_name") or "Untitled"
    extracted = doc.get("rag_extracted_data") or {}
    lines = [f"Document: {name}"]
    if extracted.get("summary"):
        lines.append(f"Summary: {extracted['summary']}")
    for req in extracted.get("key_requirements") or []:
        lines.append(f"- {req}")
    if extracted.get("submission_instructions"):
        lines.append(f"Submission instructions: {extracted['submission_instructions']}")
    return "\n".join(lines)


def gather_context(
    store: EntityStore, proposal: dict[str, Any], config: dict[str, Any], section_type: str
) -> WriterContext:
    ctx = WriterContext()

    if config.get("use_solicitation_parsing"):
        docs = store.filter(DOCUMENT_ENTITY, {"proposal_id": proposal["id"]})
        docs.sort(key=lambda d: float(d.get("rag_priority_score") or 0), reverse=True)
        if docs:
            ctx.solicitation = "\n\n".join(_solicitation_text(d) for d in docs)
            weight = _weight(config, "solicitation_weight", 1.0)
            ctx.sources += [
                {"type": "solicitation", "name": d.get("document_name") or d.get("file_name"), "weight": weight}
                for d in docs
            ]

    ref_ids = [r for r in proposal.get("reference_proposal_ids") or [] if r][:MAX_REFERENCE_PROPOSALS]
    if config.get("use_rag") and ref_ids:
        built = build_proposal_context(
            store,
            proposal,
            reference_proposal_ids=ref_ids,
            target_section_type=section_type,
            max_tokens=REFERENCE_CONTEXT_TOKENS,
            enable_citations=config.get("citation_style") not in (None, "none"),
        )
        meta = built["metadata"]
        ctx.reference_proposals = len(ref_ids)
        ctx.truncated = bool(meta["truncated"])
        if meta["sources"]:
            ctx.references = built["context"]
            weight = _weight(config, "reference_proposals_weight", 0.8)
            ctx.sources += [
                {
                    "type": "reference_proposal",
                    "proposal_id": s["proposal_id"],
                    "relevance_score": s["relevance_score"],
                    "weight": weight,
                }
                for s in meta["sources"]
            ]

    if config.get("use_content_library") and proposal.get("organization_id"):
        items = store.filter(
            "ProposalResource",
            {"organization_id": proposal["organization_id"], "resource_type": "boilerplate_text"},
            limit=MAX_LIBRARY_ITEMS,
        )
        if items:
            ctx.library = "\n\n".join(
                f"[Boilerplate - {i.get('content_category')}]: "
                f"{str(i.get('boilerplate_content') or '')[:LIBRARY_EXCERPT_CHARS]}..."
                for i in items
            )
            weight = _weight(config, "content_library_weight", 0.6)
            ctx.sources += [
                {"type": "content_library", "title": i.get("title"), "category": i.get("content_category"), "weight": weight}
                for i in items
            ]
    return ctx


def construct_prompt(
    config: dict[str, Any],
    section_type: str,
    proposal: dict[str, Any],
    ctx: WriterContext,
    params: dict[str, Any] | None = None,
) -> str:
    params = params or {}
    parts: list[str] = []
    if config.get("system_instructions"):
        parts.append(str(config["system_instructions"]))

    core = str(config.get("core_prompt_template") or "Generate a {section_type} section with a {tone} tone.")
    for key, value in (
        ("section_type", section_type),
        ("tone", config.get("tone")),
        ("reading_level", config.get("reading_level")),
        ("word_count_min", config.get("word_count_min")),
        ("word_count_max", config.get("word_count_max")),
    ):
        core = core.replace("{" + key + "}", str(value))
    parts.append(core)

    parts.append(
        "PROPOSAL DETAILS:\n"
        f"- Title: {proposal.get('proposal_name')}\n"
        f"- Agency: {proposal.get('agency_name') or 'Not specified'}\n"
        f"- Project Title: {proposal.get('project_title') or 'Not specified'}\n"
        f"- Solicitation Number: {proposal.get('solicitation_number') or 'Not specified'}"
    )
    if ctx.solicitation:
        parts.append(f"SOLICITATION REQUIREMENTS:\n{ctx.solicitation}")
    if ctx.references:
        parts.append(f"REFERENCE EXAMPLES FROM WINNING PROPOSALS:\n{ctx.references}")
    if ctx.library:
        parts.append(f"APPROVED BOILERPLATE CONTENT:\n{ctx.library}")

    guardrails = config.get("guardrails") or {}
    if guardrails.get("forbidden_phrases"):
        parts.append(f"IMPORTANT: Never use these phrases: {', '.join(guardrails['forbidden_phrases'])}")
    if guardrails.get("formatting_rules"):
        parts.append("FORMATTING RULES:\n" + "\n".join(guardrails["formatting_rules"]))
    if guardrails.get("required_disclaimers"):
        parts.append("REQUIRED DISCLAIMERS (include these):\n" + "\n".join(guardrails["required_disclaimers"]))

    if params.get("additionalContext"):
        parts.append(f"ADDITIONAL CONTEXT:\n{params['additionalContext']}")
    if config.get("citation_style") not in (None, "none"):
        parts.append(f"Use {config['citation_style']} citation style when referencing sources.")

    parts.append(f"Now generate the {section_type} section:")
    return "\n\n".join(parts)


def confidence_score(content: str, ctx: WriterContext) -> int:
    score = 50
    words = count_words(html_to_text(content))
    if 200 <= words <= 1500:
        score += 15
    elif words < 100:
        score -= 10
    if ctx.solicitation:
        score += 15
    if ctx.references:
        score += 10
    if ctx.library:
        score += 5
    if len(ctx.sources) >= 3:
        score += 5
    return max(0, min(100, score))


def compliance_issues(content: str, config: dict[str, Any]) -> list[dict[str, str]]:
    guardrails = config.get("guardrails") or {}
    issues: list[dict[str, str]] = []
    lowered = content.lower()
    for phrase in guardrails.get("forbidden_phrases") or []:
        if str(phrase).lower() in lowered:
            issues.append(
                {"type": "forbidden_phrase", "message": f'Contains forbidden phrase: "{phrase}"', "severity": "high"}
            )
    for disclaimer in guardrails.get("required_disclaimers") or []:
        if str(disclaimer) not in content:
            issues.append(
                {
                    "type": "missing_disclaimer",
                    "message": f'Missing required disclaimer: "{str(disclaimer)[:50]}..."',
                    "severity": "medium",
                }
            )
    words = count_words(html_to_text(content))
    minimum = int(config.get("default_word_count_min") or 0)
    if words < minimum:
        issues.append(
            {
                "type": "word_count",
                "message": f"Content is shorter than minimum ({words} vs {minimum})",
                "severity": "low",
            }
        )
    return issues


def write_section(
    store: EntityStore,
    proposal: dict[str, Any],
    section_type: str,
    *,
    user_email: str,
    generation_params: dict[str, Any] | None = None,
    agent_triggered: bool = False,
) -> dict[str, Any]:
    config = effective_config(get_ai_configuration(store, proposal.get("organization_id")), generation_params)
    ctx = gather_context(store, proposal, config, section_type)
    prompt = construct_prompt(config, section_type, proposal, ctx, generation_params)

    draft, meta = call_json(
        purpose="section_drafting",
        response_model=SectionDraft,
        messages=[{"role": "user", "content": prompt}],
        temperature=float(config.get("temperature") or 0.4),
    )
    content = draft.content.strip()
    words = count_words(html_to_text(content))
    score = confidence_score(content, ctx) if config.get("enable_confidence_scoring") else None
    issues = compliance_issues(content, config) if config.get("enable_compliance_check") else []

    section_data = {
        "section_name": section_type,
        "section_type": section_type,
        "content": content,
        "word_count": words,
        "status": "ai_generated",
        "ai_prompt_used": prompt,
        "ai_reference_sources": ctx.sources,
        "ai_context_summary": ctx.summary,
        "ai_generation_metadata": {
            "estimated_tokens_used": math.ceil(len(prompt) / 4),
            "reference_proposals_count": ctx.reference_proposals,
            "context_truncated": ctx.truncated,
            "generated_at": now_iso(),
            "agent_triggered": agent_triggered,
            "user_email": user_email,
            "ai_config_id": config.get("id"),
            "ai_config_name": config.get("config_name"),
            "confidence_score": score,
            "compliance_issues": issues,
            "llm_provider": config.get("llm_provider"),
            "model": meta.model,
            "temperature": config.get("temperature"),
        },
    }

    existing = store.filter("ProposalSection", {"proposal_id": proposal["id"], "section_type": section_type}, limit=1)
    if existing:
        saved = store.update("ProposalSection", existing[0]["id"], section_data)
    else:
        order = len(store.filter("ProposalSection", {"proposal_id": proposal["id"]})) + 1
        saved = store.create("ProposalSection", {"proposal_id": proposal["id"], "order": order, **section_data})

    log.info(
        "section_drafted",
        proposal_id=proposal["id"],
        section_id=saved["id"],
        section_type=section_type,
        words=words,
        sources=len(ctx.sources),
        updated=bool(existing),
    )
    return {
        "success": True,
        "section_id": saved["id"],
        "content": content,
        "word_count": words,
        "confidence_score": score,
        "compliance_issues": issues,
        "metadata": {
            "sources_used": ctx.sources,
            "context_summary": ctx.summary,
            "ai_config_used": config.get("config_name"),
        },
    }
