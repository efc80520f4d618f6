"""
Platform Alert Schemas.

Defines alert types, severities, the PlatformAlert record, the market
inputs consumed from the ingestion layer, and the bundle of inputs the
alert engine evaluates.
"""

from datetime import datetime, timedelta
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field

from miyar.learning.schemas import (
    AccuracySnapshot,
    BenchmarkSuggestion,
    DecisionPattern,
    DecisionStatus,
    OutcomeComparison,
    ProjectPatternMatch,
)


# ── Enums ──────────────────────────────────────────────────────────────


class AlertType(StrEnum):
    PRICE_SHOCK = "price_shock"
    PROJECT_AT_RISK = "project_at_risk"
    VALIDATION_CONFLICT = "validation_conflict"
    ACCURACY_DEGRADED = "accuracy_degraded"
    BENCHMARK_DRIFT = "benchmark_drift"
    MARKET_OPPORTUNITY = "market_opportunity"


class AlertSeverity(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    INFO = "info"


class AlertStatus(StrEnum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    EXPIRED = "expired"


class DeliveryStatus(StrEnum):
    NOT_ATTEMPTED = "not_attempted"
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    FAILED = "failed"


# Stale-for-display horizon per severity
SEVERITY_TTL: dict[AlertSeverity, timedelta] = {
    AlertSeverity.CRITICAL: timedelta(hours=24),
    AlertSeverity.HIGH: timedelta(hours=72),
    AlertSeverity.MEDIUM: timedelta(days=7),
    AlertSeverity.INFO: timedelta(days=7),
}


# ── External market inputs ─────────────────────────────────────────────


class PriceChangeEvent(BaseModel):
    """Detected by the ingestion layer; `significant` means a ≥15% move."""
    id: Optional[int] = None
    item_name: str
    category: str
    change_pct: float
    severity: str                   # none | minor | notable | significant
    detected_at: Optional[datetime] = None


class ProjectInsight(BaseModel):
    id: Optional[int] = None
    project_id: Optional[int] = None
    insight_type: str               # market_opportunity | ...
    severity: str                   # info | warning | critical
    title: str
    actionable_recommendation: Optional[str] = None
    created_at: Optional[datetime] = None


class CalibrationProposal(BaseModel):
    """Externally generated benchmark proposal carrying a drift factor."""
    id: Optional[int] = None
    project_id: Optional[int] = None
    benchmark_key: str = ""
    calibration_factor: float       # 0.18 = 18% drift from expected
    created_at: Optional[datetime] = None


# ── Alert record ───────────────────────────────────────────────────────


class PlatformAlert(BaseModel):
    """A severity-tagged notification. Expiry is a data field only."""
    id: Optional[int] = None
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    body: str = ""
    affected_project_ids: list[int] = Field(default_factory=list)
    affected_categories: list[str] = Field(default_factory=list)
    trigger_data: dict = Field(default_factory=dict)
    suggested_action: str = ""
    status: AlertStatus = AlertStatus.ACTIVE
    created_at: datetime
    expires_at: datetime
    delivery_status: DeliveryStatus = DeliveryStatus.NOT_ATTEMPTED

    @property
    def dedup_key(self) -> tuple[str, frozenset[int]]:
        return (self.alert_type.value, frozenset(self.affected_project_ids))

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at


class DeliveryResult(BaseModel):
    delivered: bool
    channel: str                    # email | resend | skipped
    status: DeliveryStatus
    error: Optional[str] = None


# ── Engine input bundle ────────────────────────────────────────────────


class AlertEvaluationInput(BaseModel):
    price_change_events: list[PriceChangeEvent] = Field(default_factory=list)
    project_insights: list[ProjectInsight] = Field(default_factory=list)
    recent_comparisons: list[OutcomeComparison] = Field(default_factory=list)
    pattern_matches: list[ProjectPatternMatch] = Field(default_factory=list)
    patterns: dict[int, DecisionPattern] = Field(default_factory=dict)
    project_names: dict[int, str] = Field(default_factory=dict)
    project_decisions: dict[int, DecisionStatus] = Field(default_factory=dict)
    accuracy_snapshot: Optional[AccuracySnapshot] = None
    pending_suggestions: list[BenchmarkSuggestion] = Field(default_factory=list)
    calibration_proposals: list[CalibrationProposal] = Field(default_factory=list)
