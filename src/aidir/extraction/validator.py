"""Plausibility checks over a person's stored career timeline.

Issues are advisory: a run records them as diagnostics and never blocks
writes on them. The score starts at 1.0 and each issue deducts from it;
a timeline is considered valid at a score of 0.5 or above.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date

from aidir.content.identity_filter import CROSSOVER_DOMAINS, NEGATIVE_SIGNALS, contains_term
from aidir.text import fold

EARLIEST_PLAUSIBLE_YEAR = 1950
MAX_LEADERSHIP_OVERLAP_YEARS = 2
LOW_QUALITY_SOURCES = ("llm_extraction",)

_EDUCATION_ROLES = (
    "student", "学生", "undergraduate", "graduate", "phd", "master", "bachelor",
)
_LEADERSHIP_ROLES = (
    "ceo", "cto", "president", "director", "vp", "vice president", "chief",
)

_YEAR = re.compile(r"(\d{4})")


@dataclass
class TimelineValidationResult:
    """Outcome of :func:`validate_timeline`.

    Attributes:
        is_valid: True when the score stays at or above 0.5.
        score: 0.0-1.0 plausibility score.
        issues: Human-readable issue descriptions.
    """

    is_valid: bool
    score: float
    issues: list[str] = field(default_factory=list)


def _year(value: str | None) -> int | None:
    if not value:
        return None
    match = _YEAR.search(str(value))
    return int(match.group(1)) if match else None


def validate_timeline(
    entries: list[dict], current_year: int | None = None
) -> TimelineValidationResult:
    """Check timeline entries for implausible dates, domains and overlaps.

    Args:
        entries: Career event dicts with organization, role, start_date,
            end_date, event_type, is_current and source keys.
        current_year: Reference year (defaults to today's).
    """
    if not entries:
        return TimelineValidationResult(is_valid=True, score=0.5, issues=["no timeline data"])

    year_now = current_year or date.today().year
    issues: list[str] = []
    score = 1.0

    for entry in entries:
        org = entry.get("organization") or ""
        role = entry.get("role") or ""
        start = _year(entry.get("start_date"))
        end = _year(entry.get("end_date"))

        if start is not None:
            if start < EARLIEST_PLAUSIBLE_YEAR:
                issues.append(f"start year too early: {org} ({start})")
                score -= 0.2
            if start > year_now + 1:
                issues.append(f"start year in the future: {org} ({start})")
                score -= 0.3
        if end is not None:
            if end > year_now + 1:
                issues.append(f"end year in the future: {org} ({end})")
                score -= 0.2
            if start is not None and end < start:
                issues.append(f"reversed range: {org} ({start}-{end})")
                score -= 0.3

        folded = fold(f"{org} {role}")
        for domain, keywords in NEGATIVE_SIGNALS.items():
            if any(contains_term(folded, kw) for kw in keywords):
                if domain in CROSSOVER_DOMAINS:
                    issues.append(f"possible domain crossover: {org} ({domain})")
                    score -= 0.1
                else:
                    issues.append(f"non-AI organization or role: {org} - {role} ({domain})")
                    score -= 0.25

        is_education = entry.get("event_type") == "education" or any(
            kw in role.lower() for kw in _EDUCATION_ROLES
        )
        if is_education and end is None and not entry.get("is_current"):
            issues.append(f"education without an end date: {org}")
            score -= 0.1

    leadership = [
        e for e in entries
        if any(kw in (e.get("role") or "").lower() for kw in _LEADERSHIP_ROLES)
    ]
    for i, a in enumerate(leadership):
        for b in leadership[i + 1:]:
            a_start, b_start = _year(a.get("start_date")), _year(b.get("start_date"))
            if a_start is None or b_start is None:
                continue
            a_end = _year(a.get("end_date")) or year_now
            b_end = _year(b.get("end_date")) or year_now
            overlap = min(a_end, b_end) - max(a_start, b_start)
            if overlap > MAX_LEADERSHIP_OVERLAP_YEARS:
                issues.append(
                    f"leadership roles overlap by more than {MAX_LEADERSHIP_OVERLAP_YEARS} years: "
                    f"{a.get('organization')} and {b.get('organization')}"
                )
                score -= 0.2

    for source in LOW_QUALITY_SOURCES:
        count = sum(1 for e in entries if e.get("source") == source)
        if count > len(entries) * 0.5:
            issues.append(f"more than 50% of entries come from {source}")
            score -= 0.15

    score = max(0.0, min(1.0, score))
    return TimelineValidationResult(is_valid=score >= 0.5, score=round(score, 3), issues=issues)
