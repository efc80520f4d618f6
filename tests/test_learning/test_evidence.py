"""Tests for post-mortem evidence generation and learning summaries."""

from datetime import datetime

import pytest

from miyar.learning.comparator import compare
from miyar.learning.evidence import generate_post_mortem_evidence, summarize_learning_signals
from miyar.learning.schemas import (
    DecisionStatus,
    OutcomeRecord,
    PredictionBundle,
    ProjectClassification,
)


def _compare(cost: float, rework: bool = False, risk: float = 45.0, on_time: bool = True):
    prediction = PredictionBundle(
        project_id=4,
        composite_score=72.0,
        decision=DecisionStatus.VALIDATED,
        risk_score=risk,
        predicted_cost_mid=5000.0,
    )
    outcome = OutcomeRecord(
        outcome_id=1,
        project_id=4,
        actual_cost_per_sqm=cost,
        delivered_on_time=on_time,
        client_satisfaction=4.0,
        rework_occurred=rework,
        captured_at=datetime(2026, 3, 1),
    )
    return compare(prediction, outcome)


class TestPostMortemEvidence:
    def test_accurate_prediction_yields_nothing(self):
        assert generate_post_mortem_evidence(_compare(5100.0)) == []

    def test_cost_miss_produces_grade_c_evidence(self):
        context = ProjectClassification(project_id=4, typology="Residential", tier="Luxury", location="Abu Dhabi")
        [record] = generate_post_mortem_evidence(_compare(6500.0), context)
        assert record.category == "cost_accuracy"
        assert record.reliability == "C"
        assert record.confidence_score == pytest.approx(0.60)
        assert record.price_typical == pytest.approx(6500.0)
        assert record.price_min == pytest.approx(4500.0)
        assert record.geography == "Abu Dhabi"
        assert "30.0% higher" in record.notes
        assert "Luxury" in record.tags
        assert record.source_id.startswith("postmortem-cost-4-")

    def test_small_cost_miss_is_reliability_a(self):
        [record] = generate_post_mortem_evidence(_compare(5400.0))
        assert record.reliability == "A"
        assert record.geography == "UAE"

    def test_risk_and_score_misses(self):
        comparison = _compare(5000.0, rework=True, risk=30.0, on_time=False)
        categories = [e.category for e in generate_post_mortem_evidence(comparison)]
        assert categories == ["risk_calibration", "score_calibration"]

    def test_risk_evidence_names_dimension(self):
        comparison = _compare(5000.0, rework=True, risk=30.0)
        risk = next(e for e in generate_post_mortem_evidence(comparison) if e.category == "risk_calibration")
        assert "underestimated" in risk.notes
        assert "ER" in risk.tags


class TestSummary:
    def test_under_predicted_cost_requires_action(self):
        summary = summarize_learning_signals(_compare(6500.0).learning_signals)
        assert summary.action_required is True
        assert summary.summary[0].startswith("Cost was under-predicted by 30.0%")
        assert summary.adjustments[0].dimension == "overall"

    def test_clean_prediction_needs_no_action(self):
        summary = summarize_learning_signals(_compare(5000.0).learning_signals)
        assert summary.action_required is False
        assert summary.total_signals == 1
        assert "calibrated" in summary.summary[0]
