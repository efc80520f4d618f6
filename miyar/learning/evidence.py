"""
Post-Mortem Evidence — turn outcome deltas into evidence records.

Each meaningful delta becomes a `handover`-phase evidence record that the
ingestion layer can fold into future benchmarks. Deltas are logged as
evidence only; weight and threshold changes still require human approval.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from miyar.learning.comparator import BAND_10_PCT, BAND_20_PCT, COST_NOISE_PCT
from miyar.learning.schemas import (
    AdjustmentDirection,
    LearningSignal,
    LearningSignalType,
    OutcomeComparison,
    ProjectClassification,
)

DEFAULT_GEOGRAPHY: str = "UAE"

# Reliability grade → confidence for cost evidence
COST_CONFIDENCE: dict[str, float] = {"A": 0.95, "B": 0.80, "C": 0.60}
RISK_EVIDENCE_CONFIDENCE: float = 0.85
SCORE_EVIDENCE_CONFIDENCE: float = 0.80


class PostMortemEvidence(BaseModel):
    source_id: str
    source_type: Literal["post_mortem"] = "post_mortem"
    category: str                           # cost_accuracy | risk_calibration | score_calibration
    evidence_phase: Literal["handover"] = "handover"
    price_min: Optional[float] = None
    price_typical: Optional[float] = None
    price_max: Optional[float] = None
    unit: str
    reliability: Literal["A", "B", "C"]
    confidence_score: float
    geography: str
    notes: str
    tags: list[str] = Field(default_factory=list)


class SignalAdjustment(BaseModel):
    dimension: str
    direction: AdjustmentDirection
    magnitude: float
    rationale: str


class LearningSummary(BaseModel):
    total_signals: int
    action_required: bool
    summary: list[str]
    adjustments: list[SignalAdjustment]


def generate_post_mortem_evidence(
    comparison: OutcomeComparison,
    context: Optional[ProjectClassification] = None,
) -> list[PostMortemEvidence]:
    """Evidence records for the cost, risk and score facets that missed."""
    evidence: list[PostMortemEvidence] = []
    ts = int(comparison.compared_at.timestamp() * 1000)
    project_id = comparison.project_id
    geo = (context.location if context else None) or DEFAULT_GEOGRAPHY
    typology = (context.typology if context else None) or "unknown"
    tier = (context.tier if context else None) or "unknown"
    grade = comparison.overall_accuracy_grade.value

    # ── 1. Cost accuracy ──────────────────────────────────────────────
    if comparison.cost_delta_pct is not None and comparison.actual_cost is not None:
        abs_delta = abs(comparison.cost_delta_pct)
        if abs_delta > COST_NOISE_PCT:
            direction = "higher" if comparison.cost_delta_pct > 0 else "lower"
            if abs_delta <= BAND_10_PCT:
                reliability = "A"
            elif abs_delta <= BAND_20_PCT:
                reliability = "B"
            else:
                reliability = "C"
            mid = comparison.predicted_cost_mid
            evidence.append(PostMortemEvidence(
                source_id=f"postmortem-cost-{project_id}-{ts}",
                category="cost_accuracy",
                price_min=mid * 0.9 if mid else None,
                price_typical=comparison.actual_cost,
                price_max=mid * 1.1 if mid else None,
                unit="AED/sqm",
                reliability=reliability,
                confidence_score=COST_CONFIDENCE[reliability],
                geography=geo,
                notes=(
                    f"Post-mortem: actual cost was {abs_delta:.1f}% {direction} than predicted "
                    f"({comparison.cost_accuracy_band.value}). "
                    f"Predicted: AED {mid or 0:.0f}/sqm, Actual: AED {comparison.actual_cost:.0f}/sqm. "
                    f"Grade: {grade}."
                ),
                tags=[
                    "post-mortem",
                    f"accuracy-{comparison.cost_accuracy_band.value}",
                    f"grade-{grade}",
                    typology,
                    tier,
                ],
            ))

    # ── 2. Risk calibration ───────────────────────────────────────────
    if not comparison.risk_prediction_correct:
        risk_signal = next(
            (
                s for s in comparison.learning_signals
                if s.signal_type in (
                    LearningSignalType.RISK_UNDER_PREDICTED,
                    LearningSignalType.RISK_OVER_PREDICTED,
                )
            ),
            None,
        )
        if risk_signal is not None:
            dimension = risk_signal.affected_dimension or "ER"
            verdict = (
                "underestimated"
                if risk_signal.signal_type == LearningSignalType.RISK_UNDER_PREDICTED
                else "overestimated"
            )
            evidence.append(PostMortemEvidence(
                source_id=f"postmortem-risk-{project_id}-{ts}",
                category="risk_calibration",
                unit="score",
                reliability="B",
                confidence_score=RISK_EVIDENCE_CONFIDENCE,
                geography=geo,
                notes=(
                    f"Risk prediction {verdict}. "
                    f"Predicted risk: {comparison.predicted_risk:.0f}, "
                    f"Rework occurred: {comparison.actual_rework_occurred}. "
                    f"Suggested: {risk_signal.direction.value} {dimension} dimension weight."
                ),
                tags=["post-mortem", "risk-miss", risk_signal.signal_type.value, dimension],
            ))

    # ── 3. Score calibration ──────────────────────────────────────────
    if not comparison.score_prediction_correct:
        outcome_label = "success" if comparison.actual_outcome_success else "failure"
        evidence.append(PostMortemEvidence(
            source_id=f"postmortem-score-{project_id}-{ts}",
            category="score_calibration",
            unit="composite",
            reliability="B",
            confidence_score=SCORE_EVIDENCE_CONFIDENCE,
            geography=geo,
            notes=(
                f"Score prediction was incorrect. "
                f"Predicted: {comparison.predicted_decision.value} "
                f"(score: {comparison.predicted_composite:.3f}), "
                f"Actual success: {comparison.actual_outcome_success}. Grade: {grade}."
            ),
            tags=[
                "post-mortem",
                "score-miss",
                f"decision-{comparison.predicted_decision.value}",
                f"outcome-{outcome_label}",
            ],
        ))

    return evidence


def summarize_learning_signals(signals: list[LearningSignal]) -> LearningSummary:
    """Reviewer-facing digest of one comparison's signals."""
    adjustments = [
        SignalAdjustment(
            dimension=s.affected_dimension or "overall",
            direction=s.direction,
            magnitude=s.magnitude,
            rationale=f"{s.signal_type.value}: magnitude {s.magnitude:.1f}",
        )
        for s in signals
        if s.direction != AdjustmentDirection.NONE
    ]

    by_type = {s.signal_type: s for s in signals}
    lines: list[str] = []

    cost_under = by_type.get(LearningSignalType.COST_UNDER_PREDICTED)
    cost_over = by_type.get(LearningSignalType.COST_OVER_PREDICTED)
    risk_under = by_type.get(LearningSignalType.RISK_UNDER_PREDICTED)
    risk_over = by_type.get(LearningSignalType.RISK_OVER_PREDICTED)

    if cost_under:
        lines.append(
            f"Cost was under-predicted by {cost_under.magnitude:.1f}% "
            f"- consider increasing cost benchmarks."
        )
    if cost_over:
        lines.append(
            f"Cost was over-predicted by {cost_over.magnitude:.1f}% "
            f"- consider decreasing cost benchmarks."
        )
    if risk_under:
        lines.append(
            f"Risk was under-predicted: rework occurred despite a low risk score. "
            f"Review {risk_under.affected_dimension or 'ER'} dimension."
        )
    if risk_over:
        lines.append(
            f"Risk was over-predicted: no rework despite a high risk score. "
            f"Review {risk_over.affected_dimension or 'ER'} dimension."
        )
    if LearningSignalType.SCORE_CORRECTLY_PREDICTED in by_type:
        lines.append("Score prediction was correct; current weights look calibrated.")

    return LearningSummary(
        total_signals=len(signals),
        action_required=bool(adjustments),
        summary=lines,
        adjustments=adjustments,
    )
