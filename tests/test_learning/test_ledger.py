"""
Tests for the Accuracy Ledger.

Covers:
- Empty input → zero snapshot with insufficient_data trends
- Fewer than 4 comparisons → no trends
- Aggregation: band counts, MAE, rates, platform accuracy
- Trend directions from older/newer halves
"""

from datetime import datetime, timedelta

from miyar.learning.ledger import AccuracyLedger, compute_ledger
from miyar.learning.schemas import (
    AccuracyGrade,
    CostAccuracyBand,
    OutcomeComparison,
    TrendDirection,
)

BASE = datetime(2026, 1, 1)


def _comparison(
    day: int,
    score_ok: bool = True,
    risk_ok: bool = True,
    delta: float | None = 0.0,
    grade: AccuracyGrade | None = None,
) -> OutcomeComparison:
    if delta is None:
        band = CostAccuracyBand.NO_PREDICTION
    elif abs(delta) <= 10:
        band = CostAccuracyBand.WITHIN_10PCT
    elif abs(delta) <= 20:
        band = CostAccuracyBand.WITHIN_20PCT
    else:
        band = CostAccuracyBand.OUTSIDE_20PCT
    if grade is None:
        grade = AccuracyGrade.INSUFFICIENT_DATA if delta is None else AccuracyGrade.A
    return OutcomeComparison(
        project_id=day,
        outcome_id=day,
        compared_at=BASE + timedelta(days=day),
        cost_delta_pct=delta,
        cost_accuracy_band=band,
        score_prediction_correct=score_ok,
        risk_prediction_correct=risk_ok,
        overall_accuracy_grade=grade,
    )


# ── Edge cases ────────────────────────────────────────────────────────


class TestEmptyAndSmall:
    def test_empty_input(self):
        snap = compute_ledger([])
        assert snap.total_comparisons == 0
        assert snap.score_accuracy_rate == "0.0000"
        assert snap.risk_accuracy_rate == "0.0000"
        assert snap.overall_platform_accuracy == "0.0000"
        assert snap.cost_mae_pct == "0.0000"
        assert snap.cost_trend == TrendDirection.INSUFFICIENT_DATA
        assert snap.score_trend == TrendDirection.INSUFFICIENT_DATA
        assert snap.risk_trend == TrendDirection.INSUFFICIENT_DATA

    def test_three_comparisons_have_no_trend(self):
        snap = compute_ledger([
            _comparison(1, score_ok=False, delta=40, grade=AccuracyGrade.C),
            _comparison(2),
            _comparison(3),
        ])
        assert snap.total_comparisons == 3
        assert snap.cost_trend == TrendDirection.INSUFFICIENT_DATA
        assert snap.score_trend == TrendDirection.INSUFFICIENT_DATA
        assert snap.risk_trend == TrendDirection.INSUFFICIENT_DATA


# ── Aggregation ───────────────────────────────────────────────────────


class TestAggregation:
    def test_band_counts_and_mae(self):
        snap = compute_ledger([
            _comparison(1, delta=5.0),
            _comparison(2, delta=-15.0, grade=AccuracyGrade.B),
            _comparison(3, delta=30.0, grade=AccuracyGrade.C),
            _comparison(4, delta=None),
        ])
        assert snap.with_cost_prediction == 3
        assert snap.cost_within_10pct == 1
        assert snap.cost_within_20pct == 1
        assert snap.cost_outside_20pct == 1
        assert snap.cost_mae_pct == "16.6667"

    def test_insufficient_data_excluded_from_grades(self):
        snap = compute_ledger([
            _comparison(1, grade=AccuracyGrade.A),
            _comparison(2, delta=30.0, grade=AccuracyGrade.C),
            _comparison(3, delta=None),
            _comparison(4, delta=None),
        ])
        assert snap.graded_count == 2
        assert snap.overall_platform_accuracy == "50.0000"

    def test_rates_are_percentages(self):
        snap = compute_ledger([
            _comparison(1, score_ok=True, risk_ok=False),
            _comparison(2, score_ok=True, risk_ok=True),
            _comparison(3, score_ok=False, risk_ok=True),
            _comparison(4, score_ok=True, risk_ok=True),
        ])
        assert snap.score_accuracy_rate == "75.0000"
        assert snap.risk_accuracy_rate == "75.0000"
        assert snap.score_correct_predictions == 3
        assert snap.risk_incorrect_predictions == 1


# ── Trends ────────────────────────────────────────────────────────────


class TestTrends:
    def test_bad_then_perfect_is_improving(self):
        older = [
            _comparison(d, score_ok=False, risk_ok=False, delta=30.0, grade=AccuracyGrade.C)
            for d in range(5)
        ]
        newer = [_comparison(d) for d in range(5, 10)]
        snap = compute_ledger(newer + older)  # order must not matter
        assert snap.cost_trend == TrendDirection.IMPROVING
        assert snap.score_trend == TrendDirection.IMPROVING
        assert snap.risk_trend == TrendDirection.IMPROVING

    def test_perfect_then_bad_is_degrading(self):
        older = [_comparison(d) for d in range(5)]
        newer = [
            _comparison(d, score_ok=False, risk_ok=False, delta=30.0, grade=AccuracyGrade.C)
            for d in range(5, 10)
        ]
        snap = compute_ledger(older + newer)
        assert snap.cost_trend == TrendDirection.DEGRADING
        assert snap.score_trend == TrendDirection.DEGRADING
        assert snap.risk_trend == TrendDirection.DEGRADING

    def test_flat_series_is_stable(self):
        snap = compute_ledger([_comparison(d, delta=8.0) for d in range(6)])
        assert snap.cost_trend == TrendDirection.STABLE
        assert snap.score_trend == TrendDirection.STABLE
        assert snap.risk_trend == TrendDirection.STABLE

    def test_cost_trend_exactly_two_points_counts(self):
        older = [_comparison(d, delta=10.0) for d in range(2)]
        newer = [_comparison(d, delta=8.0) for d in range(2, 4)]
        assert compute_ledger(older + newer).cost_trend == TrendDirection.IMPROVING

    def test_cost_trend_needs_deltas_in_both_halves(self):
        older = [_comparison(d, delta=None) for d in range(2)]
        newer = [_comparison(d, delta=5.0) for d in range(2, 4)]
        snap = compute_ledger(older + newer)
        assert snap.cost_trend == TrendDirection.INSUFFICIENT_DATA
        assert snap.score_trend == TrendDirection.STABLE

    def test_odd_count_older_half_is_floor(self):
        # 5 items: older = first 2, newer = last 3
        series = [
            _comparison(0, score_ok=False),
            _comparison(1, score_ok=False),
            _comparison(2, score_ok=True),
            _comparison(3, score_ok=True),
            _comparison(4, score_ok=True),
        ]
        assert compute_ledger(series).score_trend == TrendDirection.IMPROVING

    def test_custom_rate_threshold(self):
        ledger = AccuracyLedger(rate_threshold=0.9)
        series = [_comparison(0, score_ok=False), _comparison(1, score_ok=False)]
        series += [_comparison(2), _comparison(3)]
        assert ledger.compute(series).score_trend == TrendDirection.IMPROVING
        series[0] = _comparison(0, score_ok=True)
        assert ledger.compute(series).score_trend == TrendDirection.STABLE
