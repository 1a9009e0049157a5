from __future__ import annotations

import html
import re
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from ..ai.client import call_json
from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore

log = get_logger("chunking")

TARGET_WORDS = 200
MAX_WORDS = 400
MAX_PARAGRAPHS_PER_CHUNK = 3
PARAGRAPH_SEPARATOR = "\n\n"

_BLOCK_TAGS = (
    "p|div|h[1-6]|li|ul|ol|dl|dt|dd|table|caption|tr|thead|tbody|tfoot"
    "|section|article|blockquote|pre|header|footer|figcaption"
)
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[\s\S]*?</\1\s*>", re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_BLOCK_RE = re.compile(rf"</?(?:{_BLOCK_TAGS})\b[^>]*>", re.IGNORECASE)
# Cells of one row stay on one line, separated by a space.
_CELL_RE = re.compile(r"</?t[dh]\b[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")

_STOPWORDS = frozenset(
    """
    a about above after again all also an and any are as at be because been before
    being below between both but by can could did do does doing down during each
    few for from further had has have having he her here hers him his how i if in
    into is it its itself just me more most my no nor not now of off on once only
    or other our ours out over own same she should so some such than that the
    their theirs them then there these they this those through to too under until
    up very was we were what when where which while who whom why will with would
    you your yours shall must may within including provide provides provided
    """.split()
)


@dataclass
class Chunk:
    index: int
    text: str
    start_offset: int
    end_offset: int
    word_count: int
    paragraph_count: int


class ChunkAnalysis(BaseModel):
    summary: str = Field(description="One or two sentence summary of the passage")
    keywords: list[str] = Field(description="Up to 8 salient keywords or phrases")


def html_to_text(content: str) -> str:
    """Block tags become paragraph breaks, <br> a line break, table cells a space; other tags vanish."""
    text = str(content or "")
    text = _SCRIPT_STYLE_RE.sub(" ", text)
    text = _BR_RE.sub("\n", text)
    text = _BLOCK_RE.sub("\n\n", text)
    text = _CELL_RE.sub(" ", text)
    text = _TAG_RE.sub("", text)
    return html.unescape(text)


def normalize_text(text: str) -> str:
    text = str(text or "").replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\f\v\u00a0]+", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def split_paragraphs(normalized: str) -> list[str]:
    return [p for p in normalized.split(PARAGRAPH_SEPARATOR) if p]


def word_count(text: str) -> int:
    return len(text.split())


def pack_paragraphs(
    paragraphs: list[str],
    *,
    target_words: int = TARGET_WORDS,
    max_words: int = MAX_WORDS,
    max_paragraphs: int = MAX_PARAGRAPHS_PER_CHUNK,
) -> list[Chunk]:
    """
    Greedy packing. A chunk is closed once it reaches `target_words`, holds
    `max_paragraphs`, or the next paragraph would push it past `max_words`.
    A paragraph longer than `max_words` always ends up alone.

    Offsets index into PARAGRAPH_SEPARATOR.join(paragraphs).
    """
    chunks: list[Chunk] = []
    current: list[str] = []
    current_words = 0
    offset = 0
    chunk_start = 0

    def flush() -> None:
        nonlocal current, current_words
        if not current:
            return
        text = PARAGRAPH_SEPARATOR.join(current)
        chunks.append(
            Chunk(
                index=len(chunks),
                text=text,
                start_offset=chunk_start,
                end_offset=chunk_start + len(text),
                word_count=current_words,
                paragraph_count=len(current),
            )
        )
        current = []
        current_words = 0

    for para in paragraphs:
        words = word_count(para)
        if current and (
            current_words >= target_words
            or len(current) >= max_paragraphs
            or current_words + words > max_words
        ):
            flush()
        if not current:
            chunk_start = offset
        current.append(para)
        current_words += words
        offset += len(para) + len(PARAGRAPH_SEPARATOR)

    flush()
    return chunks


def chunk_content(content: str) -> tuple[str, list[Chunk]]:
    """Returns (normalized_text, chunks) for HTML section content."""
    normalized = normalize_text(html_to_text(content))
    return normalized, pack_paragraphs(split_paragraphs(normalized))


def heuristic_summary(text: str, max_chars: int = 240) -> str:
    flat = " ".join(str(text or "").split())
    m = re.search(r"^(.+?[.!?])(\s|$)", flat)
    first = m.group(1) if m else flat
    if len(first) > max_chars:
        first = first[: max_chars - 3].rstrip() + "..."
    return first


def heuristic_keywords(text: str, limit: int = 8) -> list[str]:
    words = [w for w in re.findall(r"[a-z][a-z0-9\-]{2,}", str(text or "").lower()) if w not in _STOPWORDS]
    return [w for w, _ in Counter(words).most_common(limit)]


def analyze_chunk(text: str, *, section_name: str | None = None) -> ChunkAnalysis:
    def _fallback() -> ChunkAnalysis:
        return ChunkAnalysis(summary=heuristic_summary(text), keywords=heuristic_keywords(text))

    prompt = (
        "Summarize the following proposal passage for retrieval. "
        "Return JSON with `summary` (one or two sentences) and `keywords` (up to 8).\n\n"
        f"Section: {section_name or 'Untitled'}\n\n{text}"
    )
    parsed, _meta = call_json(
        purpose="chunk_summary",
        response_model=ChunkAnalysis,
        messages=[{"role": "user", "content": prompt}],
        fallback=_fallback,
    )
    parsed.keywords = [str(k).strip() for k in parsed.keywords if str(k).strip()][:8]
    return parsed


def _delete_existing_chunks(store: EntityStore, section_id: str, pool: ThreadPoolExecutor) -> int:
    existing = store.filter("ProposalSectionChunk", {"section_id": section_id})
    list(pool.map(lambda c: store.delete("ProposalSectionChunk", c["id"]), existing))
    return len(existing)


def chunk_section(
    store: EntityStore, proposal: dict[str, Any], section: dict[str, Any], pool: ThreadPoolExecutor
) -> list[dict[str, Any]]:
    section_id = str(section.get("id"))
    section_name = section.get("section_name")
    removed = _delete_existing_chunks(store, section_id, pool)

    _normalized, chunks = chunk_content(section.get("content") or "")

    def _persist(chunk: Chunk) -> dict[str, Any]:
        analysis = analyze_chunk(chunk.text, section_name=section_name)
        return store.create(
            "ProposalSectionChunk",
            {
                "proposal_id": proposal.get("id"),
                "organization_id": proposal.get("organization_id"),
                "section_id": section_id,
                "section_name": section_name,
                "section_type": section.get("section_type"),
                "chunk_index": chunk.index,
                "chunk_text": chunk.text,
                "start_offset": chunk.start_offset,
                "end_offset": chunk.end_offset,
                "word_count": chunk.word_count,
                "summary": analysis.summary,
                "keywords": analysis.keywords,
            },
        )

    created = list(pool.map(_persist, chunks))
    log.info(
        "section_chunked",
        proposal_id=proposal.get("id"),
        section_id=section_id,
        chunks=len(created),
        removed=removed,
    )
    return created


def chunk_proposal_sections(
    store: EntityStore, proposal: dict[str, Any], section_ids: list[str] | None = None
) -> dict[str, Any]:
    sections = store.filter("ProposalSection", {"proposal_id": proposal["id"]}, sort="order")
    if section_ids:
        wanted = {str(s) for s in section_ids}
        sections = [s for s in sections if str(s.get("id")) in wanted]

    results: list[dict[str, Any]] = []
    total = 0
    # Sections run one after another; chunks within a section fan out.
    with ThreadPoolExecutor(max_workers=8) as pool:
        for section in sections:
            created = chunk_section(store, proposal, section, pool)
            total += len(created)
            results.append(
                {
                    "section_id": section.get("id"),
                    "section_name": section.get("section_name"),
                    "chunks": len(created),
                }
            )

    return {
        "success": True,
        "proposal_id": proposal["id"],
        "sections_processed": len(results),
        "chunks_created": total,
        "sections": results,
    }
