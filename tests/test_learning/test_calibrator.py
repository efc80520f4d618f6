"""
Tests for the Benchmark Calibrator.

Covers:
- Groups below the minimum size are dropped
- Cost suggestions: dominance, ±15% cap, display string
- Risk suggestions: fixed +0.10 / -0.05 deltas
- Confidence tiers
- Unknown projects and default typology / tier
"""

from datetime import datetime

import pytest

from miyar.learning.calibrator import BenchmarkCalibrator, generate_suggestions
from miyar.learning.schemas import (
    AdjustmentDirection,
    LearningSignal,
    LearningSignalType,
    OutcomeComparison,
    ProjectClassification,
    SuggestionStatus,
)


def _comparison(project_id: int, *signals: tuple[LearningSignalType, float]) -> OutcomeComparison:
    return OutcomeComparison(
        project_id=project_id,
        compared_at=datetime(2026, 3, 1),
        learning_signals=[
            LearningSignal(signal_type=t, magnitude=m) for t, m in signals
        ],
    )


def _classify(project_ids, typology="Residential", tier="Premium") -> list[ProjectClassification]:
    return [ProjectClassification(project_id=p, typology=typology, tier=tier) for p in project_ids]


UNDER = LearningSignalType.COST_UNDER_PREDICTED
OVER = LearningSignalType.COST_OVER_PREDICTED
RISK_UNDER = LearningSignalType.RISK_UNDER_PREDICTED
RISK_OVER = LearningSignalType.RISK_OVER_PREDICTED


# ── Group sizing ──────────────────────────────────────────────────────


class TestGroupSize:
    def test_two_member_group_is_skipped(self):
        comps = [_comparison(p, (UNDER, 30.0)) for p in (1, 2)]
        assert generate_suggestions(comps, _classify([1, 2])) == []

    def test_unknown_projects_are_skipped(self):
        comps = [_comparison(p, (UNDER, 30.0)) for p in range(1, 7)]
        assert generate_suggestions(comps, _classify([1, 2])) == []

    def test_missing_typology_and_tier_use_defaults(self):
        comps = [_comparison(p, (UNDER, 12.0)) for p in range(1, 4)]
        classes = [ProjectClassification(project_id=p) for p in range(1, 4)]
        [suggestion] = generate_suggestions(comps, classes)
        assert (suggestion.typology, suggestion.tier) == ("Residential", "Mid")

    def test_classification_dict_accepted(self):
        comps = [_comparison(p, (UNDER, 12.0)) for p in range(1, 4)]
        classes = {c.project_id: c for c in _classify(range(1, 4))}
        assert len(generate_suggestions(comps, classes)) == 1


# ── Cost ──────────────────────────────────────────────────────────────


class TestCostSuggestion:
    def test_six_under_predictions_capped_at_15(self):
        comps = [_comparison(p, (UNDER, 30.0)) for p in range(1, 7)]
        [suggestion] = generate_suggestions(comps, _classify(range(1, 7)))

        cost = suggestion.cost_change
        assert cost.direction == AdjustmentDirection.INCREASE
        assert cost.change_pct == pytest.approx(15.0)
        assert cost.raw_mean_pct == pytest.approx(30.0)
        assert cost.display == "+15.0%"
        assert suggestion.change_map() == {"cost_per_sqft_mid": "+15.0%"}
        assert suggestion.confidence == "0.9000"
        assert suggestion.status == SuggestionStatus.PENDING
        assert suggestion.sample_size == 6
        assert suggestion.implied_drift == pytest.approx(0.30)

    def test_over_prediction_is_negative(self):
        comps = [_comparison(p, (OVER, 8.0)) for p in range(1, 4)]
        [suggestion] = generate_suggestions(comps, _classify(range(1, 4)))
        assert suggestion.cost_change.change_pct == pytest.approx(-8.0)
        assert suggestion.cost_change.display == "-8.0%"
        assert suggestion.confidence == "0.7500"

    def test_mean_below_cap_is_kept(self):
        comps = [
            _comparison(1, (UNDER, 6.0)),
            _comparison(2, (UNDER, 10.0)),
            _comparison(3, (UNDER, 14.0)),
        ]
        [suggestion] = generate_suggestions(comps, _classify([1, 2, 3]))
        assert suggestion.cost_change.change_pct == pytest.approx(10.0)

    def test_no_dominance_no_suggestion(self):
        comps = [_comparison(p, (UNDER, 20.0)) for p in range(1, 4)]
        comps += [_comparison(p, (OVER, 20.0)) for p in range(4, 7)]
        assert generate_suggestions(comps, _classify(range(1, 7))) == []

    def test_strict_ratio_blocks_exact_double(self):
        # 4 vs 2 is not strictly more than twice
        comps = [_comparison(p, (UNDER, 20.0)) for p in range(1, 5)]
        comps += [_comparison(p, (OVER, 20.0)) for p in range(5, 7)]
        calibrator = BenchmarkCalibrator()
        assert calibrator.generate_suggestions(comps, _classify(range(1, 7))) == []
        comps.append(_comparison(7, (UNDER, 20.0)))
        assert len(calibrator.generate_suggestions(comps, _classify(range(1, 8)))) == 1


# ── Risk ──────────────────────────────────────────────────────────────


class TestRiskSuggestion:
    def test_risk_under_prediction_increases_multiplier(self):
        comps = [_comparison(p, (RISK_UNDER, 20.0)) for p in range(1, 4)]
        [suggestion] = generate_suggestions(comps, _classify(range(1, 4)))
        risk = suggestion.risk_change
        assert risk.delta == pytest.approx(0.10)
        assert risk.display == "+0.10"
        assert suggestion.cost_change is None

    def test_risk_over_prediction_decreases_multiplier(self):
        comps = [_comparison(p, (RISK_OVER, 5.0)) for p in range(1, 6)]
        [suggestion] = generate_suggestions(comps, _classify(range(1, 6)))
        assert suggestion.risk_change.delta == pytest.approx(-0.05)
        assert suggestion.confidence == "0.9000"

    def test_cost_and_risk_in_one_suggestion(self):
        comps = [_comparison(p, (UNDER, 12.0), (RISK_UNDER, 20.0)) for p in range(1, 5)]
        [suggestion] = generate_suggestions(comps, _classify(range(1, 5)))
        assert set(suggestion.change_map()) == {"cost_per_sqft_mid", "timeline_risk_multiplier"}
        assert suggestion.confidence == "0.7500"


# ── Grouping ──────────────────────────────────────────────────────────


class TestGrouping:
    def test_groups_are_independent(self):
        comps = [_comparison(p, (UNDER, 12.0)) for p in range(1, 7)]
        classes = _classify([1, 2, 3], tier="Premium") + _classify([4, 5, 6], tier="Luxury")
        suggestions = generate_suggestions(comps, classes)
        assert {s.tier for s in suggestions} == {"Premium", "Luxury"}
        assert all(s.based_on_outcomes_query.startswith("typology=Residential&tier=") for s in suggestions)
