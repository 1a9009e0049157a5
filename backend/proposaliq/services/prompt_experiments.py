from __future__ import annotations

import hashlib
from typing import Any

from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore, now_iso

log = get_logger("prompt_experiments")

EXPERIMENT_ENTITY = "PromptExperiment"
ASSIGNMENT_ENTITY = "PromptExperimentAssignment"

EXPERIMENT_STATUSES = ("draft", "active", "paused", "completed")


class ExperimentError(Exception):
    status_code = 400


class ExperimentNotFound(ExperimentError):
    status_code = 404


class ExperimentInactive(ExperimentError):
    status_code = 409


def bucket_point(experiment_id: str, subject_id: str) -> float:
    """Stable value in [0, 1) derived from the experiment/subject pair."""
    digest = hashlib.sha256(f"{experiment_id}:{subject_id}".encode("utf-8")).hexdigest()
    return int(digest[:15], 16) / float(16**15)


def pick_variant(experiment_id: str, subject_id: str, variants: list[dict[str, Any]]) -> str:
    weights = [max(0.0, float(v.get("weight", 1) or 0)) for v in variants]
    total = sum(weights)
    if total <= 0:
        raise ExperimentError("Experiment variants have no positive weight")

    point = bucket_point(experiment_id, subject_id) * total
    cumulative = 0.0
    for variant, weight in zip(variants, weights):
        cumulative += weight
        if point < cumulative:
            return str(variant["key"])
    # Floating-point edge: land in the last weighted variant.
    return str([v for v, w in zip(variants, weights) if w > 0][-1]["key"])


def validate_variants(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list) or len(raw) < 2:
        raise ExperimentError("At least two variants are required")
    out: list[dict[str, Any]] = []
    seen: set[str] = set()
    for v in raw:
        if not isinstance(v, dict):
            raise ExperimentError("Each variant must be an object")
        key = str(v.get("key") or "").strip()
        if not key:
            raise ExperimentError("Each variant needs a key")
        if key in seen:
            raise ExperimentError(f"Duplicate variant key '{key}'")
        seen.add(key)
        try:
            weight = float(v.get("weight", 1))
        except (TypeError, ValueError) as e:
            raise ExperimentError(f"Invalid weight for variant '{key}'") from e
        if weight < 0:
            raise ExperimentError(f"Invalid weight for variant '{key}'")
        out.append({"key": key, "prompt": str(v.get("prompt") or ""), "weight": weight})
    if sum(v["weight"] for v in out) <= 0:
        raise ExperimentError("Experiment variants have no positive weight")
    return out


class PromptExperimentService:
    """
    A/B assignment for prompt variants, persisted in the entity store so
    assignments are shared across instances and survive restarts.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def get_experiment(self, experiment_id: str) -> dict[str, Any]:
        exp = self.store.get(EXPERIMENT_ENTITY, experiment_id)
        if not exp:
            raise ExperimentNotFound("Experiment not found")
        return exp

    def create_experiment(self, data: dict[str, Any], *, created_by: str | None) -> dict[str, Any]:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ExperimentError("name is required")
        status = str(data.get("status") or "active").strip().lower()
        if status not in EXPERIMENT_STATUSES:
            raise ExperimentError(f"status must be one of {', '.join(EXPERIMENT_STATUSES)}")

        exp = self.store.create(
            EXPERIMENT_ENTITY,
            {
                "name": name,
                "prompt_key": str(data.get("prompt_key") or "").strip() or None,
                "organization_id": data.get("organization_id"),
                "description": data.get("description"),
                "status": status,
                "variants": validate_variants(data.get("variants")),
                "created_by": created_by,
            },
        )
        log.info("prompt_experiment_created", experiment_id=exp["id"], variants=len(exp["variants"]))
        return exp

    def set_status(self, experiment_id: str, status: str) -> dict[str, Any]:
        self.get_experiment(experiment_id)
        status = str(status or "").strip().lower()
        if status not in EXPERIMENT_STATUSES:
            raise ExperimentError(f"status must be one of {', '.join(EXPERIMENT_STATUSES)}")
        return self.store.update(EXPERIMENT_ENTITY, experiment_id, {"status": status}) or {}

    def _find_assignment(self, experiment_id: str, subject_id: str) -> dict[str, Any] | None:
        rows = self.store.filter(
            ASSIGNMENT_ENTITY,
            {"experiment_id": experiment_id, "subject_id": subject_id},
            sort="created_date",
            limit=1,
        )
        return rows[0] if rows else None

    def assign(self, experiment_id: str, subject_id: str) -> dict[str, Any]:
        """Existing assignments are always returned, even for inactive experiments."""
        subject_id = str(subject_id or "").strip()
        if not subject_id:
            raise ExperimentError("subject_id is required")

        exp = self.get_experiment(experiment_id)
        existing = self._find_assignment(experiment_id, subject_id)
        if existing:
            return {**existing, "is_new": False}

        if exp.get("status") != "active":
            raise ExperimentInactive("Experiment is not active")

        variant_key = pick_variant(experiment_id, subject_id, exp.get("variants") or [])
        rec = self.store.create(
            ASSIGNMENT_ENTITY,
            {
                "experiment_id": experiment_id,
                "organization_id": exp.get("organization_id"),
                "subject_id": subject_id,
                "variant_key": variant_key,
                "assigned_date": now_iso(),
                "outcome_recorded": False,
            },
        )
        log.info("prompt_experiment_assigned", experiment_id=experiment_id, variant=variant_key)
        return {**rec, "is_new": True}

    def variant_prompt(self, experiment: dict[str, Any], variant_key: str) -> str | None:
        for v in experiment.get("variants") or []:
            if v.get("key") == variant_key:
                return v.get("prompt")
        return None

    def record_outcome(
        self,
        experiment_id: str,
        subject_id: str,
        *,
        rating: float | None = None,
        accepted: bool | None = None,
    ) -> dict[str, Any]:
        if rating is None and accepted is None:
            raise ExperimentError("rating or accepted is required")
        if rating is not None:
            try:
                rating = float(rating)
            except (TypeError, ValueError) as e:
                raise ExperimentError("rating must be a number") from e
            if not 1 <= rating <= 5:
                raise ExperimentError("rating must be between 1 and 5")

        self.get_experiment(experiment_id)
        assignment = self._find_assignment(experiment_id, str(subject_id or ""))
        if not assignment:
            raise ExperimentNotFound("No assignment for this subject")

        updates: dict[str, Any] = {"outcome_recorded": True, "outcome_date": now_iso()}
        if rating is not None:
            updates["rating"] = rating
        if accepted is not None:
            updates["accepted"] = bool(accepted)
        return self.store.update(ASSIGNMENT_ENTITY, assignment["id"], updates) or {}

    def summarize(self, experiment_id: str) -> dict[str, Any]:
        exp = self.get_experiment(experiment_id)
        assignments = self.store.filter(ASSIGNMENT_ENTITY, {"experiment_id": experiment_id})

        def _empty() -> dict[str, Any]:
            return {"assignments": 0, "outcomes": 0, "ratings": [], "accepted": 0, "decided": 0}

        per_variant: dict[str, dict[str, Any]] = {}
        for v in exp.get("variants") or []:
            per_variant[v["key"]] = _empty()

        for a in assignments:
            stats = per_variant.setdefault(a.get("variant_key"), _empty())
            stats["assignments"] += 1
            if a.get("outcome_recorded"):
                stats["outcomes"] += 1
            if a.get("rating") is not None:
                stats["ratings"].append(float(a["rating"]))
            if a.get("accepted") is not None:
                stats["decided"] += 1
                stats["accepted"] += 1 if a.get("accepted") else 0

        variants = []
        for key, s in per_variant.items():
            variants.append(
                {
                    "variant_key": key,
                    "assignments": s["assignments"],
                    "outcomes": s["outcomes"],
                    "mean_rating": round(sum(s["ratings"]) / len(s["ratings"]), 3) if s["ratings"] else None,
                    "acceptance_rate": round(s["accepted"] / s["decided"], 3) if s["decided"] else None,
                }
            )

        return {
            "experiment_id": experiment_id,
            "name": exp.get("name"),
            "status": exp.get("status"),
            "total_assignments": len(assignments),
            "variants": variants,
        }
