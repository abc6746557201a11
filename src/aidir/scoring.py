"""Completeness and influence scoring.

Both scores are pure functions of a stored snapshot: no I/O, same input
gives the same output, safe to run as a recurring sweep. Completeness
measures data richness (0-100, fixed weights); influence measures
external importance and never reads completeness.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

DESCRIPTION_MIN_CHARS = 50

# field -> (weight, cap); cap None means presence-only
WEIGHTS: dict[str, tuple[int, int | None]] = {
    "avatar": (10, None),
    "description": (10, None),
    "occupation": (8, None),
    "organization": (8, None),
    "links": (12, 4),
    "demographics": (7, None),
    "content": (20, 20),
    "career": (15, 8),
    "cards": (10, 10),
}

DEMOGRAPHIC_FIELDS = ("gender", "birth_year", "country")

GRADE_THRESHOLDS: tuple[tuple[int, str], ...] = ((90, "A"), (70, "B"), (50, "C"), (30, "D"))

INFLUENCE_WEIGHTS = {"code": 0.35, "academic": 0.40, "social": 0.25}


@dataclass
class ScoreResult:
    """Completeness score with per-field points."""

    total: int
    breakdown: dict[str, float] = field(default_factory=dict)
    grade: str = "F"
    missing_fields: list[str] = field(default_factory=list)


def diminishing_credit(count: float, weight: float, cap: int) -> float:
    """Points for *count* records where each further record earns less.

    The i-th record (0-based) earns ``weight * (cap - i) / (cap * (cap + 1) / 2)``,
    so exactly *cap* records earn the full weight and records beyond the
    cap earn nothing. Fractional counts earn the matching fraction of the
    next record's credit.
    """
    if count <= 0 or cap <= 0 or weight <= 0:
        return 0.0
    denominator = cap * (cap + 1) / 2
    effective = min(float(count), float(cap))
    whole = int(effective)
    points = sum(weight * (cap - i) / denominator for i in range(whole))
    fraction = effective - whole
    if fraction > 0 and whole < cap:
        points += fraction * weight * (cap - whole) / denominator
    return min(points, float(weight))


def grade_for(total: int) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if total >= threshold:
            return grade
    return "F"


def score(snapshot: dict[str, Any]) -> ScoreResult:
    """Compute the completeness score of a profile snapshot.

    Args:
        snapshot: Person fields plus related-record counts as returned by
            ``AsyncPersonStore.get_snapshot`` (``content_counts``,
            ``career_event_count``, ``career_events_without_start``,
            ``card_count``).
    """
    breakdown: dict[str, float] = {}

    breakdown["avatar"] = float(WEIGHTS["avatar"][0]) if snapshot.get("avatar_url") else 0.0

    description = (snapshot.get("description") or "").strip()
    breakdown["description"] = (
        float(WEIGHTS["description"][0]) if len(description) >= DESCRIPTION_MIN_CHARS else 0.0
    )
    breakdown["occupation"] = float(WEIGHTS["occupation"][0]) if snapshot.get("occupations") else 0.0
    breakdown["organization"] = (
        float(WEIGHTS["organization"][0]) if snapshot.get("organizations") else 0.0
    )

    weight, cap = WEIGHTS["links"]
    breakdown["links"] = diminishing_credit(len(snapshot.get("links") or []), weight, cap)

    present = sum(1 for name in DEMOGRAPHIC_FIELDS if snapshot.get(name) not in (None, ""))
    breakdown["demographics"] = WEIGHTS["demographics"][0] * present / len(DEMOGRAPHIC_FIELDS)

    weight, cap = WEIGHTS["content"]
    content_total = sum((snapshot.get("content_counts") or {}).values())
    breakdown["content"] = diminishing_credit(content_total, weight, cap)

    # Events without a start date count half: valid, but less complete
    weight, cap = WEIGHTS["career"]
    events = snapshot.get("career_event_count") or 0
    dateless = min(snapshot.get("career_events_without_start") or 0, events)
    breakdown["career"] = diminishing_credit(events - 0.5 * dateless, weight, cap)

    weight, cap = WEIGHTS["cards"]
    breakdown["cards"] = diminishing_credit(snapshot.get("card_count") or 0, weight, cap)

    for name, (weight, _) in WEIGHTS.items():
        breakdown[name] = round(max(0.0, min(float(weight), breakdown[name])), 2)

    total = max(0, min(100, round(sum(breakdown.values()))))
    missing = [name for name, points in breakdown.items() if points == 0]
    return ScoreResult(total=total, breakdown=breakdown, grade=grade_for(total), missing_fields=missing)


def _log_scale(value: float) -> float:
    return math.log10(max(0.0, value) + 1) * 20


def influence_score(snapshot: dict[str, Any]) -> float:
    """External importance score, unbounded positive.

    Code reach (log stars), academic impact (60% log citations capped at
    100, 40% h-index) and social reach (log followers). A curated
    ``influence_override`` value replaces the computed score.
    """
    override = snapshot.get("influence_override")
    if override is not None:
        return max(0.0, float(override))

    code = _log_scale(snapshot.get("code_stars") or 0)
    citations = min(100.0, _log_scale(snapshot.get("citation_count") or 0))
    h_index = min(100.0, (snapshot.get("h_index") or 0) * 1.25)
    academic = 0.6 * citations + 0.4 * h_index
    social = _log_scale(snapshot.get("follower_count") or 0)

    value = (
        INFLUENCE_WEIGHTS["code"] * code
        + INFLUENCE_WEIGHTS["academic"] * academic
        + INFLUENCE_WEIGHTS["social"] * social
    )
    return round(value, 2)
