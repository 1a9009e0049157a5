from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

AGENCY_POINTS = 40
PROJECT_TYPE_POINTS = 30
WON_POINTS = 20
SUBMITTED_POINTS = 10
CONTRACT_VALUE_POINTS = 10
CATEGORY_POINTS = 15
RECENCY_POINTS = 5
TITLE_OVERLAP_POINTS = 5

RECENCY_WINDOW = timedelta(days=730)
CONTRACT_VALUE_TOLERANCE = 0.5
TITLE_WORD_MIN_LEN = 5
TITLE_OVERLAP_MIN = 2

DEFAULT_MIN_RELEVANCE_SCORE = 40
DEFAULT_MAX_RESULTS = 10
CANDIDATE_POOL_LIMIT = 100


@dataclass
class ScoredProposal:
    proposal: dict[str, Any]
    score: int = 0
    reasons: list[str] = field(default_factory=list)

    @property
    def is_win(self) -> bool:
        return _norm(self.proposal.get("status")) == "won"

    def to_dict(self) -> dict[str, Any]:
        p = self.proposal
        return {
            "proposal_id": p.get("id"),
            "proposal_name": p.get("proposal_name"),
            "agency_name": p.get("agency_name"),
            "project_type": p.get("project_type"),
            "status": p.get("status"),
            "contract_value": p.get("contract_value"),
            "relevance_score": self.score,
            "relevance_reasons": list(self.reasons),
            "is_win": self.is_win,
        }


def _norm(v: Any) -> str:
    return str(v or "").strip().lower()


def parse_amount(v: Any) -> float | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    s = re.sub(r"[^0-9.\-]", "", str(v or ""))
    if not s:
        return None
    try:
        return float(s)
    except ValueError:
        return None


def parse_iso(v: Any) -> datetime | None:
    if not isinstance(v, str) or not v.strip():
        return None
    try:
        dt = datetime.fromisoformat(v.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def title_words(title: Any) -> set[str]:
    return {w for w in re.findall(r"[a-z0-9]+", _norm(title)) if len(w) >= TITLE_WORD_MIN_LEN}


def contract_values_similar(a: Any, b: Any) -> bool:
    va, vb = parse_amount(a), parse_amount(b)
    if va is None or vb is None or va <= 0 or vb <= 0:
        return False
    avg = (va + vb) / 2
    return abs(va - vb) / avg < CONTRACT_VALUE_TOLERANCE


def score_candidate(
    current: dict[str, Any],
    candidate: dict[str, Any],
    *,
    now: datetime | None = None,
    include_status_bonus: bool = True,
) -> ScoredProposal:
    """Additive relevance score of `candidate` against `current`; not capped."""
    now = now or datetime.now(timezone.utc)
    out = ScoredProposal(proposal=candidate)

    def award(points: int, reason: str) -> None:
        out.score += points
        out.reasons.append(reason)

    agency = _norm(current.get("agency_name"))
    if agency and agency == _norm(candidate.get("agency_name")):
        award(AGENCY_POINTS, f"Same agency: {candidate.get('agency_name')}")

    ptype = _norm(current.get("project_type"))
    if ptype and ptype == _norm(candidate.get("project_type")):
        award(PROJECT_TYPE_POINTS, f"Same project type: {candidate.get('project_type')}")

    if include_status_bonus:
        status = _norm(candidate.get("status"))
        if status == "won":
            award(WON_POINTS, "Winning proposal")
        elif status == "submitted":
            award(SUBMITTED_POINTS, "Submitted proposal")

    if contract_values_similar(current.get("contract_value"), candidate.get("contract_value")):
        award(CONTRACT_VALUE_POINTS, "Similar contract value")

    category = _norm(current.get("proposal_type_category"))
    if category and category == _norm(candidate.get("proposal_type_category")):
        award(CATEGORY_POINTS, f"Same proposal category: {candidate.get('proposal_type_category')}")

    created = parse_iso(candidate.get("created_date"))
    if created and now - created <= RECENCY_WINDOW:
        award(RECENCY_POINTS, "Created within the last two years")

    shared = title_words(current.get("proposal_name")) & title_words(candidate.get("proposal_name"))
    if len(shared) >= TITLE_OVERLAP_MIN:
        award(TITLE_OVERLAP_POINTS, f"Similar title keywords: {', '.join(sorted(shared)[:5])}")

    return out


def rank_candidates(
    current: dict[str, Any],
    candidates: list[dict[str, Any]],
    *,
    min_relevance_score: int = DEFAULT_MIN_RELEVANCE_SCORE,
    max_results: int = DEFAULT_MAX_RESULTS,
    prioritize_wins: bool = True,
    exclude_ids: set[str] | None = None,
    include_status_bonus: bool = True,
    now: datetime | None = None,
) -> list[ScoredProposal]:
    """
    Score every eligible candidate, drop those under `min_relevance_score`,
    order wins first (when `prioritize_wins`) then by score, and truncate.
    """
    now = now or datetime.now(timezone.utc)
    skip = set(exclude_ids or set())
    if current.get("id"):
        skip.add(str(current["id"]))

    scored = [
        score_candidate(current, c, now=now, include_status_bonus=include_status_bonus)
        for c in candidates
        if str(c.get("id") or "") not in skip
    ]
    kept = [s for s in scored if s.score >= int(min_relevance_score)]
    kept.sort(key=lambda s: ((1 if s.is_win else 0) if prioritize_wins else 0, s.score), reverse=True)
    return kept[: max(0, int(max_results))]
