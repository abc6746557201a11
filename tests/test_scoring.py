"""Tests for completeness and influence scoring."""

from __future__ import annotations

import pytest

from aidir.scoring import WEIGHTS, diminishing_credit, grade_for, influence_score, score


def full_snapshot() -> dict:
    return {
        "avatar_url": "https://example.org/jane.png",
        "description": "Jane Q. Researcher is a computer scientist working on reasoning agents.",
        "occupations": ["computer scientist"],
        "organizations": ["Acme Labs"],
        "links": ["https://github.com/janeq", "https://x.com/janeq_ai", "https://janeq.dev",
                  "https://scholar.example.org/janeq"],
        "gender": "female",
        "birth_year": 1985,
        "country": "Canada",
        "content_counts": {"code": 12, "video": 8},
        "career_event_count": 8,
        "career_events_without_start": 0,
        "card_count": 10,
    }


class TestDiminishingCredit:
    def test_cap_earns_full_weight(self):
        assert diminishing_credit(8, 15, 8) == pytest.approx(15)

    def test_first_record_earns_most(self):
        first = diminishing_credit(1, 20, 20)
        second = diminishing_credit(2, 20, 20) - first
        assert first > second > 0

    def test_beyond_cap_earns_nothing_more(self):
        assert diminishing_credit(1000, 20, 20) == diminishing_credit(20, 20, 20)

    def test_zero_and_negative(self):
        assert diminishing_credit(0, 20, 20) == 0.0
        assert diminishing_credit(-3, 20, 20) == 0.0


class TestCompleteness:
    """Bounded, deterministic completeness score."""

    def test_empty_profile(self):
        result = score({})
        assert result.total == 0
        assert result.grade == "F"
        assert set(result.missing_fields) == set(WEIGHTS)

    def test_full_profile(self):
        result = score(full_snapshot())
        assert result.total == 100
        assert result.grade == "A"
        assert result.missing_fields == []

    def test_deterministic(self):
        snapshot = full_snapshot()
        snapshot["card_count"] = 3
        assert score(snapshot) == score(dict(snapshot))

    def test_huge_counts_stay_within_weights(self):
        snapshot = full_snapshot()
        snapshot["content_counts"] = {"code": 10_000, "websearch": 10_000}
        snapshot["card_count"] = 1_000_000
        snapshot["links"] = [f"https://example.org/{i}" for i in range(500)]

        result = score(snapshot)

        assert result.total <= 100
        for name, (weight, _) in WEIGHTS.items():
            assert 0 <= result.breakdown[name] <= weight

    def test_short_description_earns_nothing(self):
        snapshot = full_snapshot()
        snapshot["description"] = "AI researcher."
        assert score(snapshot).breakdown["description"] == 0
        assert "description" in score(snapshot).missing_fields

    def test_partial_demographics(self):
        result = score({"country": "Canada"})
        assert result.breakdown["demographics"] == round(7 / 3, 2)

    def test_dateless_events_count_half(self):
        two_dateless = score({"career_event_count": 2, "career_events_without_start": 2})
        one_dated = score({"career_event_count": 1})
        two_dated = score({"career_event_count": 2})

        assert two_dateless.breakdown["career"] == one_dated.breakdown["career"]
        assert two_dated.breakdown["career"] > two_dateless.breakdown["career"]

    def test_more_content_never_lowers_score(self):
        lower = score({"content_counts": {"code": 3}})
        higher = score({"content_counts": {"code": 3, "video": 4}})
        assert higher.total >= lower.total

    @pytest.mark.parametrize(
        "total, grade", [(100, "A"), (90, "A"), (75, "B"), (50, "C"), (30, "D"), (29, "F")]
    )
    def test_grades(self, total, grade):
        assert grade_for(total) == grade


class TestInfluence:
    """Influence reads external signals only."""

    def test_no_signals(self):
        assert influence_score({}) == 0.0

    def test_more_stars_more_influence(self):
        assert influence_score({"code_stars": 10}) < influence_score({"code_stars": 1000})

    def test_citations_capped(self):
        assert influence_score({"citation_count": 10**9}) == influence_score(
            {"citation_count": 10**12}
        )

    def test_override_replaces_computed_value(self):
        assert influence_score({"code_stars": 50_000, "influence_override": 42}) == 42.0

    def test_independent_of_completeness(self):
        signals = {"code_stars": 120, "citation_count": 900, "h_index": 20, "follower_count": 5000}
        assert influence_score(signals) == influence_score({**full_snapshot(), **signals})
