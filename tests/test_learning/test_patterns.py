"""
Tests for the Pattern Extractor / Matcher.

Covers:
- Condition operators, including equality
- Missing dimensions fail the pattern
- Outcome validation per pattern category
- Deduplication against existing matches
- Reliability (historical success rate)
"""

from datetime import datetime

import pytest

from miyar.learning.patterns import (
    SEED_PATTERNS,
    PatternMatcher,
    check_condition,
    compute_pattern_reliability,
    extract_validated_matches,
    match_patterns,
)
from miyar.learning.schemas import (
    ConditionOperator,
    DecisionPattern,
    OutcomeComparison,
    PatternCategory,
    PatternCondition,
)

# Low SA + low ER: matches the high-complexity risk pattern (id 1)
RISKY = {"SA": 30, "FF": 50, "MP": 50, "DS": 50, "ER": 35}
# Everything above 80 on ER/MP, above 60 elsewhere: patterns 2 and 5
STRONG = {"SA": 75, "FF": 70, "MP": 85, "DS": 65, "ER": 90}
# Weak finances + weak data: cost anomaly pattern (id 3)
FRAGILE = {"SA": 50, "FF": 30, "MP": 50, "DS": 20, "ER": 50}

WHEN = datetime(2026, 3, 2)


def _comparison(
    project_id: int,
    success: bool = True,
    rework: bool = False,
    delta: float | None = 0.0,
) -> OutcomeComparison:
    return OutcomeComparison(
        project_id=project_id,
        compared_at=datetime(2026, 3, 1),
        cost_delta_pct=delta,
        actual_outcome_success=success,
        actual_rework_occurred=rework,
    )


# ── Conditions ────────────────────────────────────────────────────────


class TestConditions:
    @pytest.mark.parametrize(
        "operator, value, threshold, expected",
        [
            (ConditionOperator.LT, 39, 40, True),
            (ConditionOperator.LT, 40, 40, False),
            (ConditionOperator.GT, 81, 80, True),
            (ConditionOperator.LTE, 40, 40, True),
            (ConditionOperator.GTE, 79.9, 80, False),
            (ConditionOperator.EQ, 50, 50, True),
            (ConditionOperator.EQ, 50.5, 50, False),
        ],
    )
    def test_operators(self, operator, value, threshold, expected):
        assert check_condition(operator, value, threshold) is expected

    def test_equality_pattern_matches(self):
        pattern = DecisionPattern(
            id=99,
            name="Exact ER",
            category=PatternCategory.RISK_INDICATOR,
            conditions=[PatternCondition(dimension="ER", operator=ConditionOperator.EQ, value=50)],
        )
        assert match_patterns({"ER": 50.0}, [pattern]) == [pattern]


# ── Structural matching ───────────────────────────────────────────────


class TestMatch:
    def test_risky_vector_matches_pattern_1(self):
        assert [p.id for p in match_patterns(RISKY)] == [1]

    def test_strong_vector_matches_two_success_drivers(self):
        assert [p.id for p in match_patterns(STRONG)] == [2, 5]

    def test_missing_dimension_fails(self):
        assert match_patterns({"SA": 30}) == []

    def test_rushed_delivery_needs_sa_in_range(self):
        rushed = {"SA": 55, "ER": 20}
        assert 4 in [p.id for p in match_patterns(rushed)]
        assert 4 not in [p.id for p in match_patterns({"SA": 75, "ER": 20})]

    def test_seed_library_shape(self):
        assert len(SEED_PATTERNS) == 5
        assert all(p.version == 1 for p in SEED_PATTERNS)


# ── Outcome validation ────────────────────────────────────────────────


class TestValidatedMatches:
    def test_risk_pattern_discarded_on_clean_success(self):
        matches = extract_validated_matches([_comparison(1)], {1: RISKY})
        assert matches == []

    def test_risk_pattern_kept_on_rework(self):
        [match] = extract_validated_matches([_comparison(1, rework=True)], {1: RISKY})
        assert match.pattern_id == 1
        assert match.confidence == "1.00"
        assert match.context_snapshot.scores == RISKY

    def test_success_driver_needs_success_without_rework(self):
        kept = extract_validated_matches([_comparison(1)], {1: STRONG})
        assert {m.pattern_id for m in kept} == {2, 5}
        dropped = extract_validated_matches([_comparison(1, rework=True)], {1: STRONG})
        assert dropped == []

    def test_cost_anomaly_needs_underprediction(self):
        assert extract_validated_matches([_comparison(1, delta=8.0)], {1: FRAGILE}) == []
        [match] = extract_validated_matches([_comparison(1, delta=25.0)], {1: FRAGILE})
        assert match.pattern_id == 3
        assert match.context_snapshot.outcome_delta == pytest.approx(25.0)

    def test_cost_anomaly_without_delta_is_discarded(self):
        assert extract_validated_matches([_comparison(1, delta=None)], {1: FRAGILE}) == []

    def test_existing_pairs_are_skipped(self):
        matcher = PatternMatcher()
        comps = [_comparison(1)]
        first = matcher.extract_validated_matches(comps, {1: STRONG}, SEED_PATTERNS, matched_at=WHEN)
        again = matcher.extract_validated_matches(
            comps,
            {1: STRONG},
            SEED_PATTERNS,
            existing=[m.dedup_key for m in first],
            matched_at=WHEN,
        )
        assert len(first) == 2
        assert again == []

    def test_duplicate_comparisons_match_once(self):
        matches = extract_validated_matches(
            [_comparison(1, rework=True), _comparison(1, rework=True)], {1: RISKY}
        )
        assert len(matches) == 1

    def test_project_without_scores_skipped(self):
        assert extract_validated_matches([_comparison(1, rework=True)], {}) == []


# ── Reliability ───────────────────────────────────────────────────────


class TestReliability:
    def test_success_rate_per_pattern(self):
        comps = [
            _comparison(1, success=True),
            _comparison(2, success=False),
            _comparison(3, success=True),
        ]
        vectors = {1: STRONG, 2: STRONG, 3: RISKY}
        stats = compute_pattern_reliability(comps, vectors)
        assert stats[2].match_count == 2
        assert stats[2].success_rate == pytest.approx(0.5)
        assert stats[1].success_rate == pytest.approx(1.0)
        assert stats[3].success_rate is None
