"""
Database query functions for the learning pipeline.

Reads return pydantic domain models so the pure components never see ORM
rows. Every write is an independent insert followed by commit; dedup
checks run just before the insert and unique constraints back them up.
"""

from datetime import datetime
from typing import Iterable, Optional, Sequence

import structlog
from pydantic import ValidationError
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from miyar.alerting.schemas import (
    AlertStatus,
    CalibrationProposal,
    DeliveryStatus,
    PlatformAlert,
    PriceChangeEvent,
    ProjectInsight,
)
from miyar.db.models import (
    AccuracySnapshotRecord,
    BenchmarkSuggestionRecord,
    CalibrationProposalRecord,
    DecisionPatternRecord,
    LogicChangeLog,
    LogicVersion,
    OutcomeComparisonRecord,
    PlatformAlertRecord,
    PriceChangeEventRecord,
    Project,
    ProjectInsightRecord,
    ProjectOutcome,
    ProjectPatternMatchRecord,
    ScoreMatrix,
)
from miyar.exceptions import PatternDefinitionError
from miyar.learning.schemas import (
    AccuracySnapshot,
    BenchmarkSuggestion,
    DecisionPattern,
    DecisionStatus,
    DimensionContribution,
    OutcomeComparison,
    OutcomeRecord,
    PatternStats,
    PredictionBundle,
    ProjectClassification,
    ProjectPatternMatch,
    WeightChangeProposal,
)

logger = structlog.get_logger(__name__)

DEFAULT_LOGIC_VERSION_ID: int = 1


# ── Row → model converters ───────────────────────────────────────────────


def prediction_from_matrix(matrix: ScoreMatrix) -> PredictionBundle:
    return PredictionBundle(
        project_id=matrix.project_id,
        composite_score=matrix.composite_score or 0.0,
        decision=DecisionStatus(matrix.decision),
        risk_score=matrix.risk_score or 0.0,
        predicted_cost_mid=matrix.predicted_cost_mid,
        contributions=[DimensionContribution(**c) for c in (matrix.variable_contributions or [])],
        dimension_scores={k: float(v) for k, v in (matrix.dimension_scores or {}).items()},
    )


def predictions_from_matrices(
    matrices: dict[int, ScoreMatrix],
) -> tuple[dict[int, PredictionBundle], list[int]]:
    """
    Convert each project's latest matrix on its own.

    Rows with an unknown decision label or a malformed contribution entry
    are logged and left out; their project ids come back as the second
    element so callers can report them.
    """
    predictions: dict[int, PredictionBundle] = {}
    skipped: list[int] = []
    for project_id, matrix in matrices.items():
        try:
            predictions[project_id] = prediction_from_matrix(matrix)
        except (ValueError, TypeError) as e:
            logger.warning("score_matrix_skipped", project_id=project_id, error=str(e))
            skipped.append(project_id)
    return predictions, skipped


def decisions_from_matrices(matrices: dict[int, ScoreMatrix]) -> dict[int, DecisionStatus]:
    """Decision per project; labels outside DecisionStatus are dropped."""
    decisions: dict[int, DecisionStatus] = {}
    for project_id, matrix in matrices.items():
        try:
            decisions[project_id] = DecisionStatus(matrix.decision)
        except ValueError:
            logger.warning("score_matrix_decision_skipped", project_id=project_id, decision=matrix.decision)
    return decisions


def outcome_from_row(row: ProjectOutcome) -> OutcomeRecord:
    return OutcomeRecord(
        outcome_id=row.id,
        project_id=row.project_id,
        actual_total_cost=row.actual_total_cost,
        actual_cost_per_sqm=row.actual_cost_per_sqm,
        delivered_on_time=row.delivered_on_time,
        client_satisfaction=row.client_satisfaction,
        rework_occurred=row.rework_occurred,
        rework_cost=row.rework_cost,
        tender_iterations=row.tender_iterations,
        captured_at=row.captured_at,
    )


def comparison_from_row(row: OutcomeComparisonRecord) -> OutcomeComparison:
    return OutcomeComparison.model_validate({
        "project_id": row.project_id,
        "outcome_id": row.outcome_id,
        "compared_at": row.compared_at,
        "predicted_cost_mid": row.predicted_cost_mid,
        "actual_cost": row.actual_cost,
        "cost_delta_pct": row.cost_delta_pct,
        "cost_accuracy_band": row.cost_accuracy_band,
        "predicted_composite": row.predicted_composite,
        "predicted_decision": row.predicted_decision,
        "actual_outcome_success": row.actual_outcome_success,
        "score_prediction_correct": row.score_prediction_correct,
        "predicted_risk": row.predicted_risk,
        "actual_rework_occurred": row.actual_rework_occurred,
        "risk_prediction_correct": row.risk_prediction_correct,
        "overall_accuracy_grade": row.overall_accuracy_grade,
        "learning_signals": row.learning_signals or [],
    })


def pattern_from_row(row: DecisionPatternRecord) -> DecisionPattern:
    """Raises PatternDefinitionError for unknown comparators or categories."""
    try:
        return DecisionPattern.model_validate({
            "id": row.id,
            "name": row.name,
            "description": row.description or "",
            "category": row.category,
            "conditions": row.conditions or [],
            "version": row.version,
            "reliability_score": row.reliability_score,
            "match_count": row.match_count or 0,
        })
    except ValidationError as e:
        raise PatternDefinitionError(
            f"Pattern {row.id} ('{row.name}') has an invalid definition",
            pattern_id=row.id,
            cause=e,
        ) from e


def alert_from_row(row: PlatformAlertRecord) -> PlatformAlert:
    return PlatformAlert.model_validate({
        "id": row.id,
        "alert_type": row.alert_type,
        "severity": row.severity,
        "title": row.title,
        "body": row.body or "",
        "affected_project_ids": row.affected_project_ids or [],
        "affected_categories": row.affected_categories or [],
        "trigger_data": row.trigger_data or {},
        "suggested_action": row.suggested_action or "",
        "status": row.status,
        "created_at": row.created_at,
        "expires_at": row.expires_at,
        "delivery_status": row.delivery_status,
    })


# ── Projects + predictions ───────────────────────────────────────────────


async def get_project_classifications(
    session: AsyncSession, project_ids: Optional[Iterable[int]] = None
) -> dict[int, ProjectClassification]:
    query = select(Project)
    if project_ids is not None:
        query = query.where(Project.id.in_(list(project_ids)))
    result = await session.execute(query)
    return {
        p.id: ProjectClassification(
            project_id=p.id, typology=p.typology, tier=p.tier, location=p.location,
        )
        for p in result.scalars().all()
    }


async def get_project_names(session: AsyncSession, project_ids: Iterable[int]) -> dict[int, str]:
    ids = list(project_ids)
    if not ids:
        return {}
    result = await session.execute(select(Project.id, Project.name).where(Project.id.in_(ids)))
    return {pid: name for pid, name in result.all()}


async def get_latest_score_matrices(
    session: AsyncSession, project_ids: Optional[Iterable[int]] = None
) -> dict[int, ScoreMatrix]:
    """Most recent score matrix per project."""
    query = select(ScoreMatrix).order_by(ScoreMatrix.computed_at.asc(), ScoreMatrix.id.asc())
    if project_ids is not None:
        query = query.where(ScoreMatrix.project_id.in_(list(project_ids)))
    result = await session.execute(query)
    latest: dict[int, ScoreMatrix] = {}
    for matrix in result.scalars().all():
        latest[matrix.project_id] = matrix
    return latest


async def get_active_logic_version_id(session: AsyncSession) -> int:
    """Latest published logic version, else the default version id."""
    result = await session.execute(
        select(LogicVersion.id)
        .where(LogicVersion.status == "published")
        .order_by(LogicVersion.created_at.desc(), LogicVersion.id.desc())
        .limit(1)
    )
    version_id = result.scalar_one_or_none()
    return version_id if version_id is not None else DEFAULT_LOGIC_VERSION_ID


# ── Outcomes + comparisons ───────────────────────────────────────────────


async def get_uncompared_outcomes(session: AsyncSession) -> Sequence[ProjectOutcome]:
    """Outcomes with no comparison yet, oldest capture first."""
    compared = select(OutcomeComparisonRecord.outcome_id)
    result = await session.execute(
        select(ProjectOutcome)
        .where(ProjectOutcome.id.not_in(compared))
        .order_by(ProjectOutcome.captured_at.asc(), ProjectOutcome.id.asc())
    )
    return result.scalars().all()


async def insert_comparison(session: AsyncSession, comparison: OutcomeComparison) -> bool:
    """Insert one comparison; False when the outcome was already compared."""
    row = OutcomeComparisonRecord(
        project_id=comparison.project_id,
        outcome_id=comparison.outcome_id,
        compared_at=comparison.compared_at,
        predicted_cost_mid=comparison.predicted_cost_mid,
        actual_cost=comparison.actual_cost,
        cost_delta_pct=comparison.cost_delta_pct,
        cost_accuracy_band=comparison.cost_accuracy_band.value,
        predicted_composite=comparison.predicted_composite,
        predicted_decision=comparison.predicted_decision.value,
        actual_outcome_success=comparison.actual_outcome_success,
        score_prediction_correct=comparison.score_prediction_correct,
        predicted_risk=comparison.predicted_risk,
        actual_rework_occurred=comparison.actual_rework_occurred,
        risk_prediction_correct=comparison.risk_prediction_correct,
        overall_accuracy_grade=comparison.overall_accuracy_grade.value,
        learning_signals=[s.model_dump(mode="json") for s in comparison.learning_signals],
    )
    session.add(row)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.debug("comparison_exists", outcome_id=comparison.outcome_id)
        return False
    return True


async def get_all_comparisons(session: AsyncSession) -> list[OutcomeComparison]:
    """All comparisons in ascending compared_at order."""
    result = await session.execute(
        select(OutcomeComparisonRecord).order_by(
            OutcomeComparisonRecord.compared_at.asc(), OutcomeComparisonRecord.id.asc()
        )
    )
    return [comparison_from_row(r) for r in result.scalars().all()]


async def get_recent_comparisons(session: AsyncSession, limit: int = 20) -> list[OutcomeComparison]:
    result = await session.execute(
        select(OutcomeComparisonRecord)
        .order_by(OutcomeComparisonRecord.compared_at.desc(), OutcomeComparisonRecord.id.desc())
        .limit(limit)
    )
    return [comparison_from_row(r) for r in result.scalars().all()]


# ── Accuracy ledger ──────────────────────────────────────────────────────


async def insert_accuracy_snapshot(
    session: AsyncSession, snapshot: AccuracySnapshot, snapshot_date: Optional[datetime] = None
) -> int:
    row = AccuracySnapshotRecord(
        snapshot_date=snapshot_date or datetime.utcnow(),
        **snapshot.model_dump(mode="json"),
    )
    session.add(row)
    await session.commit()
    return row.id


async def get_latest_accuracy_snapshot(session: AsyncSession) -> Optional[AccuracySnapshot]:
    result = await session.execute(
        select(AccuracySnapshotRecord)
        .order_by(AccuracySnapshotRecord.created_at.desc(), AccuracySnapshotRecord.id.desc())
        .limit(1)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return None
    return AccuracySnapshot.model_validate(
        {name: getattr(row, name) for name in AccuracySnapshot.model_fields}
    )


# ── Benchmark suggestions ────────────────────────────────────────────────


async def insert_benchmark_suggestion_if_new(
    session: AsyncSession, suggestion: BenchmarkSuggestion
) -> bool:
    """Skip when a pending suggestion with the same group and change map exists."""
    change_map = suggestion.change_map()
    result = await session.execute(
        select(BenchmarkSuggestionRecord).where(
            and_(
                BenchmarkSuggestionRecord.typology == suggestion.typology,
                BenchmarkSuggestionRecord.tier == suggestion.tier,
                BenchmarkSuggestionRecord.status == "pending",
            )
        )
    )
    for existing in result.scalars().all():
        if existing.change_map == change_map:
            logger.debug(
                "benchmark_suggestion_exists",
                typology=suggestion.typology,
                tier=suggestion.tier,
            )
            return False

    session.add(BenchmarkSuggestionRecord(
        typology=suggestion.typology,
        tier=suggestion.tier,
        based_on_outcomes_query=suggestion.based_on_outcomes_query,
        suggested_changes=[c.model_dump(mode="json") for c in suggestion.changes],
        change_map=change_map,
        confidence=suggestion.confidence,
        sample_size=suggestion.sample_size,
        status=suggestion.status.value,
        reviewer_notes=suggestion.reviewer_notes,
    ))
    await session.commit()
    return True


async def get_pending_suggestions(
    session: AsyncSession, since: Optional[datetime] = None
) -> list[BenchmarkSuggestion]:
    query = select(BenchmarkSuggestionRecord).where(BenchmarkSuggestionRecord.status == "pending")
    if since is not None:
        query = query.where(BenchmarkSuggestionRecord.created_at >= since)
    result = await session.execute(query.order_by(BenchmarkSuggestionRecord.id.asc()))
    return [
        BenchmarkSuggestion.model_validate({
            "typology": r.typology,
            "tier": r.tier,
            "based_on_outcomes_query": r.based_on_outcomes_query or "",
            "changes": r.suggested_changes or [],
            "confidence": r.confidence,
            "status": r.status,
            "sample_size": r.sample_size or 0,
            "reviewer_notes": r.reviewer_notes or "",
        })
        for r in result.scalars().all()
    ]


# ── Logic change log ─────────────────────────────────────────────────────


async def insert_logic_change_if_new(session: AsyncSession, proposal: WeightChangeProposal) -> bool:
    """Skip when a proposed entry with the same version and summary exists."""
    result = await session.execute(
        select(func.count(LogicChangeLog.id)).where(
            and_(
                LogicChangeLog.logic_version_id == proposal.logic_version_id,
                LogicChangeLog.change_summary == proposal.change_summary,
                LogicChangeLog.status == "proposed",
            )
        )
    )
    if result.scalar_one() > 0:
        return False

    session.add(LogicChangeLog(
        logic_version_id=proposal.logic_version_id,
        actor=proposal.actor,
        dimension=proposal.dimension,
        change_summary=proposal.change_summary,
        rationale=proposal.rationale,
        status=proposal.status.value,
    ))
    await session.commit()
    return True


# ── Decision patterns ────────────────────────────────────────────────────


async def seed_patterns_if_empty(session: AsyncSession, patterns: Sequence[DecisionPattern]) -> int:
    """Insert the seed library only when no pattern exists yet."""
    result = await session.execute(select(func.count(DecisionPatternRecord.id)))
    if result.scalar_one() > 0:
        return 0

    for pattern in patterns:
        session.add(DecisionPatternRecord(
            name=pattern.name,
            description=pattern.description,
            category=pattern.category.value,
            conditions=[c.model_dump(mode="json") for c in pattern.conditions],
            version=pattern.version,
        ))
    await session.commit()
    logger.info("decision_patterns_seeded", count=len(patterns))
    return len(patterns)


async def load_patterns(session: AsyncSession) -> list[DecisionPattern]:
    """Active pattern library; malformed definitions are logged and skipped."""
    result = await session.execute(
        select(DecisionPatternRecord)
        .where(DecisionPatternRecord.is_active.is_(True))
        .order_by(DecisionPatternRecord.id.asc())
    )
    library: list[DecisionPattern] = []
    for row in result.scalars().all():
        try:
            library.append(pattern_from_row(row))
        except PatternDefinitionError as e:
            logger.warning("pattern_definition_skipped", pattern_id=e.pattern_id, **e.to_dict())
    return library


async def update_pattern_stats(session: AsyncSession, stats: dict[int, PatternStats]) -> int:
    """Write reliability_score and match_count back onto pattern rows."""
    updated = 0
    for pattern_id, entry in stats.items():
        result = await session.execute(
            update(DecisionPatternRecord)
            .where(DecisionPatternRecord.id == pattern_id)
            .values(
                reliability_score=entry.success_rate,
                match_count=entry.match_count,
                updated_at=datetime.utcnow(),
            )
        )
        updated += result.rowcount or 0
    await session.commit()
    return updated


async def get_existing_match_keys(session: AsyncSession) -> set[tuple[int, int]]:
    result = await session.execute(
        select(ProjectPatternMatchRecord.project_id, ProjectPatternMatchRecord.pattern_id)
    )
    return {(pid, pat) for pid, pat in result.all()}


async def insert_pattern_match(session: AsyncSession, match: ProjectPatternMatch) -> bool:
    """Insert one validated match; False when the pair is already recorded."""
    session.add(ProjectPatternMatchRecord(
        project_id=match.project_id,
        pattern_id=match.pattern_id,
        matched_at=match.matched_at,
        confidence=match.confidence,
        context_snapshot=match.context_snapshot.model_dump(mode="json"),
    ))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.debug("pattern_match_exists", project_id=match.project_id, pattern_id=match.pattern_id)
        return False
    return True


async def get_recent_pattern_matches(
    session: AsyncSession, since: datetime
) -> list[ProjectPatternMatch]:
    result = await session.execute(
        select(ProjectPatternMatchRecord)
        .where(ProjectPatternMatchRecord.matched_at >= since)
        .order_by(ProjectPatternMatchRecord.matched_at.asc(), ProjectPatternMatchRecord.id.asc())
    )
    return [
        ProjectPatternMatch.model_validate({
            "project_id": r.project_id,
            "pattern_id": r.pattern_id,
            "matched_at": r.matched_at,
            "confidence": r.confidence,
            "context_snapshot": r.context_snapshot,
        })
        for r in result.scalars().all()
    ]


# ── Market inputs ────────────────────────────────────────────────────────


async def get_recent_price_events(session: AsyncSession, since: datetime) -> list[PriceChangeEvent]:
    result = await session.execute(
        select(PriceChangeEventRecord).where(PriceChangeEventRecord.detected_at >= since)
    )
    return [
        PriceChangeEvent(
            id=r.id,
            item_name=r.item_name,
            category=r.category,
            change_pct=r.change_pct,
            severity=r.severity,
            detected_at=r.detected_at,
        )
        for r in result.scalars().all()
    ]


async def get_recent_insights(session: AsyncSession, since: datetime) -> list[ProjectInsight]:
    result = await session.execute(
        select(ProjectInsightRecord).where(ProjectInsightRecord.created_at >= since)
    )
    return [
        ProjectInsight(
            id=r.id,
            project_id=r.project_id,
            insight_type=r.insight_type,
            severity=r.severity,
            title=r.title,
            actionable_recommendation=r.actionable_recommendation,
            created_at=r.created_at,
        )
        for r in result.scalars().all()
    ]


async def get_recent_calibration_proposals(
    session: AsyncSession, since: datetime
) -> list[CalibrationProposal]:
    result = await session.execute(
        select(CalibrationProposalRecord).where(CalibrationProposalRecord.created_at >= since)
    )
    return [
        CalibrationProposal(
            id=r.id,
            project_id=r.project_id,
            benchmark_key=r.benchmark_key,
            calibration_factor=r.calibration_factor,
            created_at=r.created_at,
        )
        for r in result.scalars().all()
    ]


# ── Platform alerts ──────────────────────────────────────────────────────


async def get_active_alerts(session: AsyncSession) -> list[PlatformAlert]:
    result = await session.execute(
        select(PlatformAlertRecord).where(PlatformAlertRecord.status == AlertStatus.ACTIVE.value)
    )
    return [alert_from_row(r) for r in result.scalars().all()]


async def insert_alert(session: AsyncSession, alert: PlatformAlert) -> PlatformAlert:
    row = PlatformAlertRecord(
        alert_type=alert.alert_type.value,
        severity=alert.severity.value,
        title=alert.title,
        body=alert.body,
        affected_project_ids=list(alert.affected_project_ids),
        affected_categories=list(alert.affected_categories),
        trigger_data=alert.trigger_data,
        suggested_action=alert.suggested_action,
        status=alert.status.value,
        delivery_status=alert.delivery_status.value,
        created_at=alert.created_at,
        expires_at=alert.expires_at,
    )
    session.add(row)
    await session.commit()
    return alert.model_copy(update={"id": row.id})


async def update_alert_delivery(session: AsyncSession, alert_id: int, status: DeliveryStatus) -> None:
    await session.execute(
        update(PlatformAlertRecord)
        .where(PlatformAlertRecord.id == alert_id)
        .values(delivery_status=status.value)
    )
    await session.commit()


async def expire_stale_alerts(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """Mark active alerts past their expiry as expired."""
    result = await session.execute(
        update(PlatformAlertRecord)
        .where(
            and_(
                PlatformAlertRecord.status == AlertStatus.ACTIVE.value,
                PlatformAlertRecord.expires_at <= (now or datetime.utcnow()),
            )
        )
        .values(status=AlertStatus.EXPIRED.value)
    )
    await session.commit()
    return result.rowcount or 0
