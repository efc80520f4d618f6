"""
Outcome Learning Schemas.

Inputs (prediction bundles, outcome records, project classifications) are
owned by other subsystems and consumed read-only. Everything else here is
derived by the learning pipeline and is either immutable evidence
(comparisons, snapshots, pattern matches) or a human-gated proposal
(benchmark suggestions, weight change-log entries).
"""

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


# ── Enums ──────────────────────────────────────────────────────────────


class DecisionStatus(StrEnum):
    VALIDATED = "validated"
    CONDITIONAL = "conditional"
    NOT_VALIDATED = "not_validated"


class CostAccuracyBand(StrEnum):
    WITHIN_10PCT = "within_10pct"
    WITHIN_20PCT = "within_20pct"
    OUTSIDE_20PCT = "outside_20pct"
    NO_PREDICTION = "no_prediction"


class AccuracyGrade(StrEnum):
    A = "A"
    B = "B"
    C = "C"
    INSUFFICIENT_DATA = "insufficient_data"


class LearningSignalType(StrEnum):
    COST_UNDER_PREDICTED = "cost_under_predicted"     # actual > predicted
    COST_OVER_PREDICTED = "cost_over_predicted"       # actual < predicted
    RISK_UNDER_PREDICTED = "risk_under_predicted"     # rework despite low risk
    RISK_OVER_PREDICTED = "risk_over_predicted"       # no rework despite high risk
    SCORE_CORRECTLY_PREDICTED = "score_correctly_predicted"
    SCORE_INCORRECTLY_PREDICTED = "score_incorrectly_predicted"


class AdjustmentDirection(StrEnum):
    INCREASE = "increase"
    DECREASE = "decrease"
    NONE = "none"


class TrendDirection(StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"
    INSUFFICIENT_DATA = "insufficient_data"


class SuggestionStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ChangeLogStatus(StrEnum):
    PROPOSED = "proposed"
    APPLIED = "applied"
    REJECTED = "rejected"


class MissKind(StrEnum):
    FALSE_NEGATIVE = "false_negative"   # predicted not_validated, actually succeeded
    FALSE_POSITIVE = "false_positive"   # predicted validated, actually failed


class PatternCategory(StrEnum):
    RISK_INDICATOR = "risk_indicator"
    SUCCESS_DRIVER = "success_driver"
    COST_ANOMALY = "cost_anomaly"


class ConditionOperator(StrEnum):
    LT = "<"
    GT = ">"
    LTE = "<="
    GTE = ">="
    EQ = "=="


# ── External inputs ────────────────────────────────────────────────────


class DimensionContribution(BaseModel):
    """Signed contribution of one scoring variable to the composite."""
    variable: str
    dimension: str
    contribution: float


class PredictionBundle(BaseModel):
    """What the scoring engine predicted for a project (immutable)."""
    project_id: int
    composite_score: float = 0.0
    decision: DecisionStatus = DecisionStatus.NOT_VALIDATED
    risk_score: float = 0.0
    predicted_cost_mid: Optional[float] = None      # per sqm
    contributions: list[DimensionContribution] = Field(default_factory=list)
    dimension_scores: dict[str, float] = Field(default_factory=dict)


class OutcomeRecord(BaseModel):
    """What actually happened after delivery (immutable, one per project)."""
    outcome_id: Optional[int] = None
    project_id: int
    actual_total_cost: Optional[float] = None
    actual_cost_per_sqm: Optional[float] = None
    delivered_on_time: Optional[bool] = None
    client_satisfaction: Optional[float] = None     # 1-5
    rework_occurred: Optional[bool] = None
    rework_cost: Optional[float] = None
    tender_iterations: Optional[int] = None
    captured_at: Optional[datetime] = None


class ProjectClassification(BaseModel):
    project_id: int
    typology: Optional[str] = None
    tier: Optional[str] = None
    location: Optional[str] = None


# ── Comparator output ──────────────────────────────────────────────────


class LearningSignal(BaseModel):
    """Append-only evidence — never applied to live parameters directly."""
    signal_type: LearningSignalType
    magnitude: float
    affected_dimension: Optional[str] = None
    direction: AdjustmentDirection = AdjustmentDirection.NONE


class OutcomeComparison(BaseModel):
    """One prediction graded against its outcome."""
    project_id: int
    outcome_id: Optional[int] = None
    compared_at: datetime

    # Cost
    predicted_cost_mid: Optional[float] = None
    actual_cost: Optional[float] = None
    cost_delta_pct: Optional[float] = None
    cost_accuracy_band: CostAccuracyBand = CostAccuracyBand.NO_PREDICTION

    # Score
    predicted_composite: float = 0.0
    predicted_decision: DecisionStatus = DecisionStatus.NOT_VALIDATED
    actual_outcome_success: bool = False
    score_prediction_correct: bool = False

    # Risk
    predicted_risk: float = 0.0
    actual_rework_occurred: bool = False
    risk_prediction_correct: bool = False

    overall_accuracy_grade: AccuracyGrade = AccuracyGrade.INSUFFICIENT_DATA
    learning_signals: list[LearningSignal] = Field(default_factory=list)

    @property
    def primary_signal(self) -> Optional[LearningSignal]:
        return self.learning_signals[0] if self.learning_signals else None

    @property
    def has_cost_delta(self) -> bool:
        return self.cost_delta_pct is not None


# ── Ledger output ──────────────────────────────────────────────────────


class AccuracySnapshot(BaseModel):
    """
    Point-in-time accuracy rollup. Immutable once written.

    Rates and percentages are fixed-point strings with 4 decimals
    (e.g. "87.5000") so dashboards render exactly what was stored.
    """
    total_comparisons: int = 0
    with_cost_prediction: int = 0
    with_outcome_prediction: int = 0

    cost_within_10pct: int = 0
    cost_within_20pct: int = 0
    cost_outside_20pct: int = 0
    cost_mae_pct: str = "0.0000"
    cost_trend: TrendDirection = TrendDirection.INSUFFICIENT_DATA

    score_correct_predictions: int = 0
    score_incorrect_predictions: int = 0
    score_accuracy_rate: str = "0.0000"
    score_trend: TrendDirection = TrendDirection.INSUFFICIENT_DATA

    risk_correct_predictions: int = 0
    risk_incorrect_predictions: int = 0
    risk_accuracy_rate: str = "0.0000"
    risk_trend: TrendDirection = TrendDirection.INSUFFICIENT_DATA

    overall_platform_accuracy: str = "0.0000"
    grade_a: int = 0
    grade_b: int = 0
    grade_c: int = 0

    @property
    def graded_count(self) -> int:
        return self.grade_a + self.grade_b + self.grade_c


# ── Calibration proposals ──────────────────────────────────────────────


class CostSuggestion(BaseModel):
    """Proposed % change to the benchmark mid cost per sqft."""
    kind: Literal["cost"] = "cost"
    target: Literal["cost_per_sqft_mid"] = "cost_per_sqft_mid"
    direction: AdjustmentDirection
    change_pct: float               # signed, capped at ±15
    raw_mean_pct: float             # uncapped mean magnitude of the dominant signals
    signal_count: int

    @property
    def display(self) -> str:
        return f"{self.change_pct:+.1f}%"


class RiskSuggestion(BaseModel):
    """Proposed fixed delta to the timeline risk multiplier."""
    kind: Literal["risk"] = "risk"
    target: Literal["timeline_risk_multiplier"] = "timeline_risk_multiplier"
    direction: AdjustmentDirection
    delta: float
    signal_count: int

    @property
    def display(self) -> str:
        return f"{self.delta:+.2f}"


SuggestedChange = Annotated[Union[CostSuggestion, RiskSuggestion], Field(discriminator="kind")]


class BenchmarkSuggestion(BaseModel):
    """
    Proposed benchmark adjustment for one (typology, tier) group.

    Created pending; accepted/rejected only through human review.
    """
    typology: str
    tier: str
    based_on_outcomes_query: str
    changes: list[SuggestedChange] = Field(default_factory=list)
    confidence: str                     # "0.9000" / "0.7500"
    status: SuggestionStatus = SuggestionStatus.PENDING
    sample_size: int = 0
    reviewer_notes: str = ""

    @property
    def cost_change(self) -> Optional[CostSuggestion]:
        return next((c for c in self.changes if isinstance(c, CostSuggestion)), None)

    @property
    def risk_change(self) -> Optional[RiskSuggestion]:
        return next((c for c in self.changes if isinstance(c, RiskSuggestion)), None)

    def change_map(self) -> dict[str, str]:
        """Reviewer-facing map: target → display string."""
        return {c.target: c.display for c in self.changes}

    @property
    def implied_drift(self) -> float:
        """Uncapped cost drift as a fraction (0.30 = 30%)."""
        cost = self.cost_change
        return cost.raw_mean_pct / 100.0 if cost else 0.0


class WeightChangeProposal(BaseModel):
    """Logic change-log entry proposing a dimension weight adjustment."""
    logic_version_id: int
    actor: int = 0                      # 0 = system
    dimension: str
    miss_kind: MissKind
    occurrences: int
    category_total: int
    change_summary: str
    rationale: str
    status: ChangeLogStatus = ChangeLogStatus.PROPOSED


# ── Pattern library ────────────────────────────────────────────────────


class PatternCondition(BaseModel):
    dimension: str
    operator: ConditionOperator
    value: float


class DecisionPattern(BaseModel):
    """A named, versioned conjunction of dimension conditions."""
    id: int
    name: str
    description: str = ""
    category: PatternCategory
    conditions: list[PatternCondition]
    version: int = 1
    reliability_score: Optional[float] = None   # historical success rate of matching projects
    match_count: int = 0


class MatchContext(BaseModel):
    scores: dict[str, float]
    outcome_delta: Optional[float] = None
    success: bool


class ProjectPatternMatch(BaseModel):
    """A structural match that was validated against the actual outcome."""
    project_id: int
    pattern_id: int
    matched_at: datetime
    confidence: str = "1.00"
    context_snapshot: MatchContext

    @property
    def dedup_key(self) -> tuple[int, int]:
        return (self.project_id, self.pattern_id)


class PatternStats(BaseModel):
    pattern_id: int
    match_count: int = 0
    success_count: int = 0

    @property
    def success_rate(self) -> Optional[float]:
        if self.match_count == 0:
            return None
        return self.success_count / self.match_count
