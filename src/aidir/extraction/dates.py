"""Partial-date normalization for timeline entries.

A bare year becomes Jan 1 (start) or Dec 31 (end) of that year; a bare
month becomes its first or last day. An open-ended end ("present") is
stored as a null end date with ``is_current`` set. A missing date is
also null but carries an explicit ``*_unknown`` flag, so "ongoing" and
"unknown" stay distinguishable.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class NormalizedRange:
    start_date: str | None
    end_date: str | None
    is_current: bool
    start_unknown: bool
    end_unknown: bool


def normalize_partial_date(value: str | None, *, end: bool = False) -> str | None:
    """Expand ``YYYY`` / ``YYYY-MM`` / ``YYYY-MM-DD`` into a full ISO date.

    Returns None for empty or invalid input (including impossible days).
    """
    if not value:
        return None
    parts = value.strip().split("-")
    try:
        year = int(parts[0])
        if len(parts) == 1:
            result = date(year, 12, 31) if end else date(year, 1, 1)
        elif len(parts) == 2:
            month = int(parts[1])
            day = calendar.monthrange(year, month)[1] if end else 1
            result = date(year, month, day)
        elif len(parts) == 3:
            result = date(year, int(parts[1]), int(parts[2]))
        else:
            return None
    except (ValueError, calendar.IllegalMonthError):
        return None
    return result.isoformat()


def normalize_range(
    start: str | None, end: str | None, event_type: str = "career"
) -> NormalizedRange:
    """Normalize a start/end pair as extracted or as read from the knowledge base.

    Awards are point-in-time facts: they never carry an end and are
    never ``current``.
    """
    start_date = normalize_partial_date(start, end=False)

    if event_type == "award":
        return NormalizedRange(
            start_date=start_date,
            end_date=None,
            is_current=False,
            start_unknown=start_date is None,
            end_unknown=False,
        )

    if end is not None and end.strip().lower() == "present":
        return NormalizedRange(
            start_date=start_date,
            end_date=None,
            is_current=True,
            start_unknown=start_date is None,
            end_unknown=False,
        )

    end_date = normalize_partial_date(end, end=True)
    return NormalizedRange(
        start_date=start_date,
        end_date=end_date,
        is_current=False,
        start_unknown=start_date is None,
        end_unknown=end_date is None,
    )
