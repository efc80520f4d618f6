"""
Outcome Comparator — grade one prediction against its real outcome.

Computes:
- Cost accuracy: % delta of actual vs predicted mid cost, banded 10 / 20 / outside
- Score accuracy: did the decision label anticipate actual success?
- Risk accuracy: did the risk score anticipate rework?
- Overall grade A / B / C (or insufficient_data)
- Learning signals, ordered cost → risk → score

Total function: missing inputs degrade the result, they never raise.
"""

from datetime import datetime
from typing import Optional

import structlog

from miyar.learning.schemas import (
    AccuracyGrade,
    AdjustmentDirection,
    CostAccuracyBand,
    DecisionStatus,
    LearningSignal,
    LearningSignalType,
    OutcomeComparison,
    OutcomeRecord,
    PredictionBundle,
)

logger = structlog.get_logger(__name__)

# Cost band edges (absolute % delta, inclusive)
BAND_10_PCT: float = 10.0
BAND_20_PCT: float = 20.0

# Deltas at or below this are noise and emit no cost signal
COST_NOISE_PCT: float = 5.0

# Predicted risk at or above this means "we expect rework"
RISK_THRESHOLD: float = 60.0

# Client satisfaction (1-5) needed for a successful outcome
SATISFACTION_THRESHOLD: float = 3.0

# Rework is usually an Execution Readiness problem
RISK_SIGNAL_DIMENSION: str = "ER"


def band_for_delta(delta_pct: float) -> CostAccuracyBand:
    """Band an absolute cost delta. Edges are inclusive: 10.0 is within_10pct."""
    abs_delta = abs(delta_pct)
    if abs_delta <= BAND_10_PCT:
        return CostAccuracyBand.WITHIN_10PCT
    if abs_delta <= BAND_20_PCT:
        return CostAccuracyBand.WITHIN_20PCT
    return CostAccuracyBand.OUTSIDE_20PCT


class OutcomeComparator:
    """
    Compares a prediction bundle to an outcome record.

    Stateless and side-effect free; safe to call concurrently.
    """

    def __init__(
        self,
        risk_threshold: float = RISK_THRESHOLD,
        satisfaction_threshold: float = SATISFACTION_THRESHOLD,
        cost_noise_pct: float = COST_NOISE_PCT,
    ):
        self.risk_threshold = risk_threshold
        self.satisfaction_threshold = satisfaction_threshold
        self.cost_noise_pct = cost_noise_pct

    def compare(
        self,
        prediction: Optional[PredictionBundle],
        outcome: OutcomeRecord,
        compared_at: Optional[datetime] = None,
    ) -> OutcomeComparison:
        """
        Grade a prediction against its outcome.

        Args:
            prediction: What the scoring engine predicted (None if never scored)
            outcome: What actually happened
            compared_at: Timestamp for ledger ordering; defaults to the
                outcome's capture time, then to now

        Returns:
            OutcomeComparison with bands, grade and learning signals
        """
        if prediction is None:
            prediction = PredictionBundle(project_id=outcome.project_id)

        when = compared_at or outcome.captured_at or datetime.utcnow()

        # ── Cost accuracy ─────────────────────────────────────────────
        actual_cost = outcome.actual_cost_per_sqm
        predicted_mid = prediction.predicted_cost_mid
        cost_delta_pct: Optional[float] = None
        band = CostAccuracyBand.NO_PREDICTION

        if actual_cost is not None and predicted_mid is not None and predicted_mid > 0:
            cost_delta_pct = (actual_cost - predicted_mid) / predicted_mid * 100.0
            band = band_for_delta(cost_delta_pct)

        # ── Score accuracy ────────────────────────────────────────────
        criteria_met = self._success_criteria_met(outcome)
        actual_success = criteria_met == 3
        score_correct = self._score_correct(prediction.decision, criteria_met)

        # ── Risk accuracy ─────────────────────────────────────────────
        predicted_risk = prediction.risk_score
        rework = bool(outcome.rework_occurred)
        high_risk = predicted_risk >= self.risk_threshold
        risk_correct = (high_risk and rework) or (not high_risk and not rework)

        # ── Grade ─────────────────────────────────────────────────────
        grade = self._grade(band, actual_cost, score_correct, risk_correct)

        signals: list[LearningSignal] = []
        if grade != AccuracyGrade.INSUFFICIENT_DATA:
            signals = self._extract_signals(
                cost_delta_pct, predicted_risk, rework, score_correct
            )

        comparison = OutcomeComparison(
            project_id=outcome.project_id,
            outcome_id=outcome.outcome_id,
            compared_at=when,
            predicted_cost_mid=predicted_mid,
            actual_cost=actual_cost,
            cost_delta_pct=cost_delta_pct,
            cost_accuracy_band=band,
            predicted_composite=prediction.composite_score,
            predicted_decision=prediction.decision,
            actual_outcome_success=actual_success,
            score_prediction_correct=score_correct,
            predicted_risk=predicted_risk,
            actual_rework_occurred=rework,
            risk_prediction_correct=risk_correct,
            overall_accuracy_grade=grade,
            learning_signals=signals,
        )

        logger.debug(
            "outcome_compared",
            project_id=outcome.project_id,
            band=band.value,
            grade=grade.value,
            signals=len(signals),
        )
        return comparison

    def _success_criteria_met(self, outcome: OutcomeRecord) -> int:
        """Count of: delivered on time, satisfied client, no rework."""
        on_time = bool(outcome.delivered_on_time)
        satisfied = (
            outcome.client_satisfaction is not None
            and outcome.client_satisfaction >= self.satisfaction_threshold
        )
        no_rework = outcome.rework_occurred is False or outcome.rework_occurred is None
        return int(on_time) + int(satisfied) + int(no_rework)

    @staticmethod
    def _score_correct(decision: DecisionStatus, criteria_met: int) -> bool:
        """
        validated is right on a clean success, not_validated on any failure.
        conditional is right only on a mixed outcome: some criteria met, not all.
        """
        if decision == DecisionStatus.VALIDATED:
            return criteria_met == 3
        if decision == DecisionStatus.NOT_VALIDATED:
            return criteria_met < 3
        if decision == DecisionStatus.CONDITIONAL:
            return 0 < criteria_met < 3
        return False

    @staticmethod
    def _grade(
        band: CostAccuracyBand,
        actual_cost: Optional[float],
        score_correct: bool,
        risk_correct: bool,
    ) -> AccuracyGrade:
        if band == CostAccuracyBand.NO_PREDICTION or actual_cost is None:
            return AccuracyGrade.INSUFFICIENT_DATA
        if band == CostAccuracyBand.WITHIN_10PCT and score_correct and risk_correct:
            return AccuracyGrade.A
        if band in (CostAccuracyBand.WITHIN_10PCT, CostAccuracyBand.WITHIN_20PCT) and (
            score_correct or risk_correct
        ):
            return AccuracyGrade.B
        return AccuracyGrade.C

    def _extract_signals(
        self,
        cost_delta_pct: Optional[float],
        predicted_risk: float,
        rework: bool,
        score_correct: bool,
    ) -> list[LearningSignal]:
        """Ordered: cost signal, risk signal, then exactly one score signal."""
        signals: list[LearningSignal] = []

        # 1. Cost
        if cost_delta_pct is not None:
            if cost_delta_pct > self.cost_noise_pct:
                signals.append(LearningSignal(
                    signal_type=LearningSignalType.COST_UNDER_PREDICTED,
                    magnitude=abs(cost_delta_pct),
                    direction=AdjustmentDirection.INCREASE,
                ))
            elif cost_delta_pct < -self.cost_noise_pct:
                signals.append(LearningSignal(
                    signal_type=LearningSignalType.COST_OVER_PREDICTED,
                    magnitude=abs(cost_delta_pct),
                    direction=AdjustmentDirection.DECREASE,
                ))

        # 2. Risk
        if rework and predicted_risk < self.risk_threshold:
            signals.append(LearningSignal(
                signal_type=LearningSignalType.RISK_UNDER_PREDICTED,
                magnitude=self.risk_threshold - predicted_risk,
                affected_dimension=RISK_SIGNAL_DIMENSION,
                direction=AdjustmentDirection.INCREASE,
            ))
        elif not rework and predicted_risk >= self.risk_threshold:
            signals.append(LearningSignal(
                signal_type=LearningSignalType.RISK_OVER_PREDICTED,
                magnitude=predicted_risk - (self.risk_threshold - 1),
                affected_dimension=RISK_SIGNAL_DIMENSION,
                direction=AdjustmentDirection.DECREASE,
            ))

        # 3. Score — dimension-level attribution is the weight analyzer's job
        signals.append(LearningSignal(
            signal_type=(
                LearningSignalType.SCORE_CORRECTLY_PREDICTED if score_correct
                else LearningSignalType.SCORE_INCORRECTLY_PREDICTED
            ),
            magnitude=1.0,
        ))

        return signals


def compare(
    prediction: Optional[PredictionBundle],
    outcome: OutcomeRecord,
    compared_at: Optional[datetime] = None,
) -> OutcomeComparison:
    """Module-level convenience using default thresholds."""
    return OutcomeComparator().compare(prediction, outcome, compared_at)
