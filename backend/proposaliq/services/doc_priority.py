from __future__ import annotations

import math
from typing import Any

SUPPLEMENTARY_BASE: dict[str, int] = {
    "amendment": 96,
    "q_a_response": 95,
    "sow": 90,
    "pws": 90,
    "clarification": 85,
}
OTHER_SUPPLEMENTARY_BASE = 75
BASE_DOCUMENT = 60

LATEST_VERSION_BOOST = 5
MAX_AMENDMENT_BOOST = 4


def _as_number(v: Any) -> float:
    if isinstance(v, bool) or v is None:
        return 0.0
    try:
        n = float(v)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    # "inf", "nan" and 1e400 count as absent.
    return n if math.isfinite(n) else 0.0


def base_priority(doc: dict[str, Any]) -> int:
    if not doc.get("is_supplementary"):
        return BASE_DOCUMENT
    kind = str(doc.get("supplementary_type") or "").strip().lower()
    return SUPPLEMENTARY_BASE.get(kind, OTHER_SUPPLEMENTARY_BASE)


def calculate_priority(doc: dict[str, Any]) -> int:
    """
    0-100 retrieval priority for a solicitation document.

    Base from the document kind, +5 for the latest version, +1 per amendment
    number (capped at +4), then the manual `priority_boost`, clamped.
    """
    score = float(base_priority(doc))

    if doc.get("is_latest_version"):
        score += LATEST_VERSION_BOOST

    is_amendment = str(doc.get("supplementary_type") or "").strip().lower() == "amendment"
    if doc.get("is_supplementary") and is_amendment:
        amendment_number = int(max(0.0, _as_number(doc.get("amendment_number"))))
        score += min(MAX_AMENDMENT_BOOST, amendment_number)

    score += _as_number(doc.get("priority_boost"))
    return int(round(max(0.0, min(100.0, score))))
