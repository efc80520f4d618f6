"""
Accuracy Ledger — roll comparisons up into a trend-carrying snapshot.

Computes:
- Cost band counts and mean absolute cost error (MAE, %)
- Score / risk accuracy rates (%)
- Overall platform accuracy: share of graded comparisons graded A or B
- Trend per facet: older half vs newer half of the chronological series

insufficient_data comparisons are left out of the grade tallies entirely.
"""

from typing import Callable, Sequence

import structlog

from miyar.learning.schemas import (
    AccuracyGrade,
    AccuracySnapshot,
    CostAccuracyBand,
    OutcomeComparison,
    TrendDirection,
)

logger = structlog.get_logger(__name__)

# Need at least this many comparisons before any trend is reported
MIN_COMPARISONS_FOR_TREND: int = 4

# Correct-rate change (fraction) that counts as a real move
RATE_TREND_THRESHOLD: float = 0.05

# MAE change (percentage points) that counts as a real move
COST_TREND_THRESHOLD: float = 2.0


def _fixed(value: float) -> str:
    return f"{value:.4f}"


def _mean_abs_delta(comparisons: Sequence[OutcomeComparison]) -> tuple[float, int]:
    """MAE over comparisons with a known cost delta, plus how many there were."""
    deltas = [abs(c.cost_delta_pct) for c in comparisons if c.cost_delta_pct is not None]
    if not deltas:
        return 0.0, 0
    return sum(deltas) / len(deltas), len(deltas)


def _rate(
    comparisons: Sequence[OutcomeComparison],
    check: Callable[[OutcomeComparison], bool],
) -> float:
    if not comparisons:
        return 0.0
    return sum(1 for c in comparisons if check(c)) / len(comparisons)


class AccuracyLedger:
    """
    Aggregates comparisons into an AccuracySnapshot.

    Pure: the same input always yields the same snapshot.
    """

    def __init__(
        self,
        min_for_trend: int = MIN_COMPARISONS_FOR_TREND,
        rate_threshold: float = RATE_TREND_THRESHOLD,
        cost_threshold: float = COST_TREND_THRESHOLD,
    ):
        self.min_for_trend = min_for_trend
        self.rate_threshold = rate_threshold
        self.cost_threshold = cost_threshold

    def compute(self, comparisons: Sequence[OutcomeComparison]) -> AccuracySnapshot:
        """
        Build a snapshot from an arbitrary set of comparisons.

        Empty input yields the all-zero, all-insufficient_data snapshot.
        """
        if not comparisons:
            return AccuracySnapshot()

        ordered = sorted(comparisons, key=lambda c: c.compared_at)

        with_cost = 0
        within_10 = within_20 = outside_20 = 0
        sum_abs_delta = 0.0
        score_correct = score_incorrect = 0
        risk_correct = risk_incorrect = 0
        grade_a = grade_b = grade_c = 0

        for c in ordered:
            if c.cost_accuracy_band != CostAccuracyBand.NO_PREDICTION:
                with_cost += 1
                if c.cost_delta_pct is not None:
                    sum_abs_delta += abs(c.cost_delta_pct)
                if c.cost_accuracy_band == CostAccuracyBand.WITHIN_10PCT:
                    within_10 += 1
                elif c.cost_accuracy_band == CostAccuracyBand.WITHIN_20PCT:
                    within_20 += 1
                else:
                    outside_20 += 1

            if c.score_prediction_correct:
                score_correct += 1
            else:
                score_incorrect += 1

            if c.risk_prediction_correct:
                risk_correct += 1
            else:
                risk_incorrect += 1

            if c.overall_accuracy_grade == AccuracyGrade.A:
                grade_a += 1
            elif c.overall_accuracy_grade == AccuracyGrade.B:
                grade_b += 1
            elif c.overall_accuracy_grade == AccuracyGrade.C:
                grade_c += 1

        cost_mae = sum_abs_delta / with_cost if with_cost else 0.0

        score_total = score_correct + score_incorrect
        score_rate = score_correct / score_total * 100.0 if score_total else 0.0

        risk_total = risk_correct + risk_incorrect
        risk_rate = risk_correct / risk_total * 100.0 if risk_total else 0.0

        graded = grade_a + grade_b + grade_c
        platform_accuracy = (grade_a + grade_b) / graded * 100.0 if graded else 0.0

        cost_trend, score_trend, risk_trend = self._trends(ordered)

        snapshot = AccuracySnapshot(
            total_comparisons=len(ordered),
            with_cost_prediction=with_cost,
            with_outcome_prediction=score_total,
            cost_within_10pct=within_10,
            cost_within_20pct=within_20,
            cost_outside_20pct=outside_20,
            cost_mae_pct=_fixed(cost_mae),
            cost_trend=cost_trend,
            score_correct_predictions=score_correct,
            score_incorrect_predictions=score_incorrect,
            score_accuracy_rate=_fixed(score_rate),
            score_trend=score_trend,
            risk_correct_predictions=risk_correct,
            risk_incorrect_predictions=risk_incorrect,
            risk_accuracy_rate=_fixed(risk_rate),
            risk_trend=risk_trend,
            overall_platform_accuracy=_fixed(platform_accuracy),
            grade_a=grade_a,
            grade_b=grade_b,
            grade_c=grade_c,
        )

        logger.info(
            "accuracy_ledger_computed",
            total=len(ordered),
            platform_accuracy=snapshot.overall_platform_accuracy,
            cost_trend=cost_trend.value,
            score_trend=score_trend.value,
            risk_trend=risk_trend.value,
        )
        return snapshot

    def _trends(
        self, ordered: Sequence[OutcomeComparison]
    ) -> tuple[TrendDirection, TrendDirection, TrendDirection]:
        """(cost, score, risk) trends from a chronologically ascending series."""
        insufficient = TrendDirection.INSUFFICIENT_DATA
        if len(ordered) < self.min_for_trend:
            return insufficient, insufficient, insufficient

        # Older half gets the floor half when the count is odd
        mid = len(ordered) // 2
        older, newer = ordered[:mid], ordered[mid:]

        score_trend = self._rate_trend(
            _rate(older, lambda c: c.score_prediction_correct),
            _rate(newer, lambda c: c.score_prediction_correct),
        )
        risk_trend = self._rate_trend(
            _rate(older, lambda c: c.risk_prediction_correct),
            _rate(newer, lambda c: c.risk_prediction_correct),
        )

        old_mae, old_n = _mean_abs_delta(older)
        new_mae, new_n = _mean_abs_delta(newer)
        if old_n == 0 or new_n == 0:
            cost_trend = insufficient
        elif new_mae <= old_mae - self.cost_threshold:
            cost_trend = TrendDirection.IMPROVING       # lower error is better
        elif new_mae >= old_mae + self.cost_threshold:
            cost_trend = TrendDirection.DEGRADING
        else:
            cost_trend = TrendDirection.STABLE

        return cost_trend, score_trend, risk_trend

    def _rate_trend(self, old_rate: float, new_rate: float) -> TrendDirection:
        if new_rate > old_rate + self.rate_threshold:
            return TrendDirection.IMPROVING
        if new_rate < old_rate - self.rate_threshold:
            return TrendDirection.DEGRADING
        return TrendDirection.STABLE


def compute_ledger(comparisons: Sequence[OutcomeComparison]) -> AccuracySnapshot:
    """Module-level convenience using default thresholds."""
    return AccuracyLedger().compute(comparisons)
