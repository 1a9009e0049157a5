"""
Inventory of AI purposes.

Purpose strings drive model routing (Settings.openai_model_for) and the
default output budget for each call site.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

AiPurpose = Literal[
    "chunk_summary",
    "document_extraction",
    "file_extraction",
    "past_performance_extraction",
    "section_drafting",
]


@dataclass(frozen=True)
class PurposeDefaults:
    max_tokens_default: int
    timeout_s: int


PURPOSE_DEFAULTS: dict[str, PurposeDefaults] = {
    "chunk_summary": PurposeDefaults(max_tokens_default=400, timeout_s=30),
    "document_extraction": PurposeDefaults(max_tokens_default=2500, timeout_s=90),
    "file_extraction": PurposeDefaults(max_tokens_default=2500, timeout_s=90),
    "past_performance_extraction": PurposeDefaults(max_tokens_default=3000, timeout_s=120),
    "section_drafting": PurposeDefaults(max_tokens_default=3000, timeout_s=120),
}


def defaults_for(purpose: str) -> PurposeDefaults:
    return PURPOSE_DEFAULTS.get(purpose, PurposeDefaults(max_tokens_default=1200, timeout_s=60))
