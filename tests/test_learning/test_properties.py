"""
Property-based tests for the comparator and ledger.

Covers:
- compare() is total over arbitrary partial inputs
- insufficient_data iff a cost side is missing
- Exactly one score signal, always last
- Ledger counts and rates stay within bounds
"""

from datetime import datetime, timedelta

from hypothesis import given, settings as hyp_settings, strategies as st

from miyar.learning.comparator import compare
from miyar.learning.ledger import compute_ledger
from miyar.learning.schemas import (
    AccuracyGrade,
    CostAccuracyBand,
    DecisionStatus,
    LearningSignalType,
    OutcomeRecord,
    PredictionBundle,
)

costs = st.one_of(st.none(), st.floats(min_value=1.0, max_value=50_000.0))
optional_bools = st.one_of(st.none(), st.booleans())

predictions = st.one_of(
    st.none(),
    st.builds(
        PredictionBundle,
        project_id=st.just(1),
        composite_score=st.floats(min_value=0, max_value=100),
        decision=st.sampled_from(list(DecisionStatus)),
        risk_score=st.floats(min_value=0, max_value=100),
        predicted_cost_mid=costs,
    ),
)

outcomes = st.builds(
    OutcomeRecord,
    outcome_id=st.integers(min_value=1, max_value=10_000),
    project_id=st.just(1),
    actual_cost_per_sqm=costs,
    delivered_on_time=optional_bools,
    client_satisfaction=st.one_of(st.none(), st.floats(min_value=1, max_value=5)),
    rework_occurred=optional_bools,
    captured_at=st.just(datetime(2026, 3, 1)),
)

SCORE_SIGNALS = {
    LearningSignalType.SCORE_CORRECTLY_PREDICTED,
    LearningSignalType.SCORE_INCORRECTLY_PREDICTED,
}


class TestComparatorProperties:
    @given(prediction=predictions, outcome=outcomes)
    @hyp_settings(max_examples=200)
    def test_insufficient_data_iff_cost_missing(self, prediction, outcome):
        result = compare(prediction, outcome)
        cost_missing = (
            prediction is None
            or prediction.predicted_cost_mid is None
            or outcome.actual_cost_per_sqm is None
        )
        assert (result.overall_accuracy_grade == AccuracyGrade.INSUFFICIENT_DATA) == cost_missing
        if cost_missing:
            assert result.learning_signals == []
            assert result.cost_delta_pct is None

    @given(prediction=predictions, outcome=outcomes)
    @hyp_settings(max_examples=200)
    def test_graded_comparisons_end_with_one_score_signal(self, prediction, outcome):
        result = compare(prediction, outcome)
        if result.overall_accuracy_grade == AccuracyGrade.INSUFFICIENT_DATA:
            return
        types = [s.signal_type for s in result.learning_signals]
        assert types[-1] in SCORE_SIGNALS
        assert sum(1 for t in types if t in SCORE_SIGNALS) == 1
        assert all(s.magnitude >= 0 for s in result.learning_signals)

    @given(prediction=predictions, outcome=outcomes)
    @hyp_settings(max_examples=100)
    def test_band_consistent_with_delta(self, prediction, outcome):
        result = compare(prediction, outcome)
        if result.cost_delta_pct is None:
            assert result.cost_accuracy_band == CostAccuracyBand.NO_PREDICTION
        elif abs(result.cost_delta_pct) <= 10:
            assert result.cost_accuracy_band == CostAccuracyBand.WITHIN_10PCT


class TestLedgerProperties:
    @given(
        pairs=st.lists(st.tuples(predictions, outcomes), max_size=25),
    )
    @hyp_settings(max_examples=75)
    def test_snapshot_bounds(self, pairs):
        comparisons = [
            compare(p, o, compared_at=datetime(2026, 1, 1) + timedelta(days=i))
            for i, (p, o) in enumerate(pairs)
        ]
        snap = compute_ledger(comparisons)

        assert snap.total_comparisons == len(comparisons)
        assert snap.cost_within_10pct + snap.cost_within_20pct + snap.cost_outside_20pct == snap.with_cost_prediction
        assert snap.graded_count <= snap.total_comparisons
        for rate in (snap.score_accuracy_rate, snap.risk_accuracy_rate, snap.overall_platform_accuracy):
            assert 0.0 <= float(rate) <= 100.0
            assert len(rate.split(".")[1]) == 4
