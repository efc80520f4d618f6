"""
MIYAR Learning Pipeline SQLAlchemy Models.

Input tables are owned by other subsystems and only read here; output
tables are written by the pipeline, one independent insert at a time.
Uses compatibility types for SQLite (dev) + PostgreSQL (prod).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from miyar.db.compat import JSONType
from miyar.db.engine import Base


# ──────────────────────────────────────────────────────────────────────────────
# 1. Inputs (read-only to the pipeline)
# ──────────────────────────────────────────────────────────────────────────────


class Project(Base):
    __tablename__ = "ml_projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    typology: Mapped[Optional[str]] = mapped_column(String(100))
    tier: Mapped[Optional[str]] = mapped_column(String(50))
    location: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ScoreMatrix(Base):
    """Prediction bundle recorded by the scoring engine. Latest row wins."""

    __tablename__ = "ml_score_matrices"
    __table_args__ = (
        Index("ix_ml_score_matrices_project", "project_id", "computed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("ml_projects.id"), nullable=False)
    composite_score: Mapped[float] = mapped_column(Float, default=0.0)
    decision: Mapped[str] = mapped_column(String(20), default="not_validated")
    risk_score: Mapped[float] = mapped_column(Float, default=0.0)
    predicted_cost_mid: Mapped[Optional[float]] = mapped_column(Float)
    dimension_scores: Mapped[dict] = mapped_column(JSONType(empty=dict), default=dict)
    # [{"variable": ..., "dimension": ..., "contribution": ...}]
    variable_contributions: Mapped[list] = mapped_column(JSONType(empty=list), default=list)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ProjectOutcome(Base):
    __tablename__ = "ml_project_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("ml_projects.id"), nullable=False)
    actual_total_cost: Mapped[Optional[float]] = mapped_column(Float)
    actual_cost_per_sqm: Mapped[Optional[float]] = mapped_column(Float)
    delivered_on_time: Mapped[Optional[bool]] = mapped_column(Boolean)
    client_satisfaction: Mapped[Optional[float]] = mapped_column(Float)
    rework_occurred: Mapped[Optional[bool]] = mapped_column(Boolean)
    rework_cost: Mapped[Optional[float]] = mapped_column(Float)
    tender_iterations: Mapped[Optional[int]] = mapped_column(Integer)
    captured_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class LogicVersion(Base):
    __tablename__ = "ml_logic_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), default="")
    status: Mapped[str] = mapped_column(String(20), default="draft")     # draft | published | archived
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class PriceChangeEventRecord(Base):
    __tablename__ = "ml_price_change_events"
    __table_args__ = (Index("ix_ml_price_events_detected", "detected_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    change_pct: Mapped[float] = mapped_column(Float, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ProjectInsightRecord(Base):
    __tablename__ = "ml_project_insights"
    __table_args__ = (Index("ix_ml_insights_created", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("ml_projects.id"))
    insight_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    actionable_recommendation: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class CalibrationProposalRecord(Base):
    """Externally generated benchmark proposal."""

    __tablename__ = "ml_calibration_proposals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("ml_projects.id"))
    benchmark_key: Mapped[str] = mapped_column(String(255), default="")
    calibration_factor: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# 2. Outputs
# ──────────────────────────────────────────────────────────────────────────────


class OutcomeComparisonRecord(Base):
    __tablename__ = "ml_outcome_comparisons"
    __table_args__ = (
        UniqueConstraint("outcome_id", name="uq_ml_comparison_outcome"),
        Index("ix_ml_comparisons_compared_at", "compared_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("ml_projects.id"), nullable=False)
    outcome_id: Mapped[int] = mapped_column(Integer, ForeignKey("ml_project_outcomes.id"), nullable=False)
    compared_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    predicted_cost_mid: Mapped[Optional[float]] = mapped_column(Float)
    actual_cost: Mapped[Optional[float]] = mapped_column(Float)
    cost_delta_pct: Mapped[Optional[float]] = mapped_column(Float)
    cost_accuracy_band: Mapped[str] = mapped_column(String(20), nullable=False)

    predicted_composite: Mapped[float] = mapped_column(Float, default=0.0)
    predicted_decision: Mapped[str] = mapped_column(String(20), nullable=False)
    actual_outcome_success: Mapped[bool] = mapped_column(Boolean, default=False)
    score_prediction_correct: Mapped[bool] = mapped_column(Boolean, default=False)

    predicted_risk: Mapped[float] = mapped_column(Float, default=0.0)
    actual_rework_occurred: Mapped[bool] = mapped_column(Boolean, default=False)
    risk_prediction_correct: Mapped[bool] = mapped_column(Boolean, default=False)

    overall_accuracy_grade: Mapped[str] = mapped_column(String(20), nullable=False)
    learning_signals: Mapped[list] = mapped_column(JSONType(empty=list), default=list)


class AccuracySnapshotRecord(Base):
    """Append-only ledger entry."""

    __tablename__ = "ml_accuracy_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    total_comparisons: Mapped[int] = mapped_column(Integer, default=0)
    with_cost_prediction: Mapped[int] = mapped_column(Integer, default=0)
    with_outcome_prediction: Mapped[int] = mapped_column(Integer, default=0)
    cost_within_10pct: Mapped[int] = mapped_column(Integer, default=0)
    cost_within_20pct: Mapped[int] = mapped_column(Integer, default=0)
    cost_outside_20pct: Mapped[int] = mapped_column(Integer, default=0)
    cost_mae_pct: Mapped[str] = mapped_column(String(20), default="0.0000")
    cost_trend: Mapped[str] = mapped_column(String(20), nullable=False)
    score_correct_predictions: Mapped[int] = mapped_column(Integer, default=0)
    score_incorrect_predictions: Mapped[int] = mapped_column(Integer, default=0)
    score_accuracy_rate: Mapped[str] = mapped_column(String(20), default="0.0000")
    score_trend: Mapped[str] = mapped_column(String(20), nullable=False)
    risk_correct_predictions: Mapped[int] = mapped_column(Integer, default=0)
    risk_incorrect_predictions: Mapped[int] = mapped_column(Integer, default=0)
    risk_accuracy_rate: Mapped[str] = mapped_column(String(20), default="0.0000")
    risk_trend: Mapped[str] = mapped_column(String(20), nullable=False)
    overall_platform_accuracy: Mapped[str] = mapped_column(String(20), default="0.0000")
    grade_a: Mapped[int] = mapped_column(Integer, default=0)
    grade_b: Mapped[int] = mapped_column(Integer, default=0)
    grade_c: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class BenchmarkSuggestionRecord(Base):
    __tablename__ = "ml_benchmark_suggestions"
    __table_args__ = (
        Index("ix_ml_suggestions_group_status", "typology", "tier", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    typology: Mapped[str] = mapped_column(String(100), nullable=False)
    tier: Mapped[str] = mapped_column(String(50), nullable=False)
    based_on_outcomes_query: Mapped[str] = mapped_column(Text, default="")
    suggested_changes: Mapped[list] = mapped_column(JSONType(empty=list), default=list)
    change_map: Mapped[dict] = mapped_column(JSONType(empty=dict), default=dict)
    confidence: Mapped[str] = mapped_column(String(10), nullable=False)
    sample_size: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    reviewer_notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class LogicChangeLog(Base):
    __tablename__ = "ml_logic_change_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    logic_version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    actor: Mapped[int] = mapped_column(Integer, default=0)
    dimension: Mapped[Optional[str]] = mapped_column(String(10))
    change_summary: Mapped[str] = mapped_column(Text, nullable=False)
    rationale: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="proposed")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class DecisionPatternRecord(Base):
    """Pattern library. Conditions are stored as data."""

    __tablename__ = "ml_decision_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    # [{"dimension": "SA", "operator": "<", "value": 40}]
    conditions: Mapped[list] = mapped_column(JSONType(empty=list), nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    reliability_score: Mapped[Optional[float]] = mapped_column(Float)
    match_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ProjectPatternMatchRecord(Base):
    __tablename__ = "ml_project_pattern_matches"
    __table_args__ = (
        UniqueConstraint("project_id", "pattern_id", name="uq_ml_match_project_pattern"),
        Index("ix_ml_matches_matched_at", "matched_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("ml_projects.id"), nullable=False)
    pattern_id: Mapped[int] = mapped_column(Integer, ForeignKey("ml_decision_patterns.id"), nullable=False)
    matched_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    confidence: Mapped[str] = mapped_column(String(10), default="1.00")
    context_snapshot: Mapped[dict] = mapped_column(JSONType(empty=dict), default=dict)


class PlatformAlertRecord(Base):
    __tablename__ = "ml_platform_alerts"
    __table_args__ = (
        Index("ix_ml_alerts_type_status", "alert_type", "status"),
        Index("ix_ml_alerts_expires", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, default="")
    affected_project_ids: Mapped[list] = mapped_column(JSONType(empty=list), default=list)
    affected_categories: Mapped[list] = mapped_column(JSONType(empty=list), default=list)
    trigger_data: Mapped[dict] = mapped_column(JSONType(empty=dict), default=dict)
    suggested_action: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="active")
    delivery_status: Mapped[str] = mapped_column(String(20), default="not_attempted")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
