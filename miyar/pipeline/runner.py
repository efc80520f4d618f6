"""
Pipeline Runner — one batch run of the outcome learning pipeline.

LearningPipeline.run():
1. comparisons   grade every uncompared outcome against its latest prediction
2. snapshot      append an accuracy snapshot over all comparisons
3. suggestions   benchmark calibration proposals (pending, deduplicated)
4. weights       scoring-weight change-log proposals (proposed, deduplicated)
5. patterns      seed library, record validated matches, refresh reliability
6. alerts        AlertPipeline.run() over the freshly written state

Error isolation: a failing stage is logged and the remaining stages still
run. Every write is an independent insert, so a partial run never
corrupts what earlier stages committed. A score matrix that does not
parse is logged and left out; its outcome waits for the next run.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from miyar.alerting.channels import AlertDelivery
from miyar.alerting.dedup import AlertDeduplicator
from miyar.alerting.engine import AlertEngine
from miyar.alerting.schemas import AlertEvaluationInput
from miyar.config import Settings, settings as default_settings
from miyar.db import queries as db_queries
from miyar.learning.calibrator import BenchmarkCalibrator
from miyar.learning.comparator import OutcomeComparator
from miyar.learning.ledger import AccuracyLedger
from miyar.learning.patterns import SEED_PATTERNS, PatternMatcher
from miyar.learning.schemas import OutcomeComparison, PredictionBundle
from miyar.learning.weights import WeightSensitivityAnalyzer

logger = structlog.get_logger(__name__)


class PipelineRunReport(BaseModel):
    """Per-stage counts and errors for one run."""
    run: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    counts: dict[str, int] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def merge(self, other: "PipelineRunReport", prefix: str) -> None:
        for key, value in other.counts.items():
            self.counts[f"{prefix}.{key}"] = value
        for key, value in other.errors.items():
            self.errors[f"{prefix}.{key}"] = value


class AlertPipeline:
    """Evaluate alert rules, persist new alerts, deliver the urgent ones."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        config: Optional[Settings] = None,
        engine: Optional[AlertEngine] = None,
        delivery: Optional[AlertDelivery] = None,
    ):
        self.session_factory = session_factory
        self.config = config or default_settings
        self.engine = engine or AlertEngine()
        self.dedup = AlertDeduplicator()
        self.delivery = delivery or AlertDelivery(self.config)

    async def run(self, now: Optional[datetime] = None) -> PipelineRunReport:
        when = now or datetime.utcnow()
        report = PipelineRunReport(run="alerts", started_at=when)

        try:
            async with self.session_factory() as session:
                inputs = await self._gather_inputs(session, when)
                candidates = self.engine.evaluate(inputs, now=when)
                active = await db_queries.get_active_alerts(session)
                fresh = self.dedup.filter_new(candidates, active)

                inserted = []
                for alert in fresh:
                    inserted.append(await db_queries.insert_alert(session, alert))

                report.counts["candidates"] = len(candidates)
                report.counts["suppressed"] = len(candidates) - len(fresh)
                report.counts["inserted"] = len(inserted)

                results = await self.delivery.deliver_many(inserted)
                for alert_id, result in results.items():
                    await db_queries.update_alert_delivery(session, alert_id, result.status)
                report.counts["delivered"] = sum(1 for r in results.values() if r.delivered)
        except Exception as e:
            logger.error("alert_run_failed", error=str(e))
            report.errors["evaluate"] = str(e)

        report.finished_at = datetime.utcnow()
        logger.info("alert_run_completed", **report.counts, errors=len(report.errors))
        return report

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Housekeeping: flip active alerts past expiry to expired."""
        try:
            async with self.session_factory() as session:
                expired = await db_queries.expire_stale_alerts(session, now)
        except Exception as e:
            logger.error("alert_expiry_failed", error=str(e))
            return 0
        if expired:
            logger.info("alerts_expired", count=expired)
        return expired

    async def _gather_inputs(self, session: AsyncSession, now: datetime) -> AlertEvaluationInput:
        since = now - timedelta(hours=self.config.alert_memory_window_hours)

        price_events = await db_queries.get_recent_price_events(session, since)
        insights = await db_queries.get_recent_insights(session, since)
        comparisons = await db_queries.get_recent_comparisons(
            session, limit=self.config.recent_comparisons_limit,
        )
        matches = await db_queries.get_recent_pattern_matches(session, since)
        patterns = {p.id: p for p in await db_queries.load_patterns(session)}
        snapshot = await db_queries.get_latest_accuracy_snapshot(session)
        suggestions = await db_queries.get_pending_suggestions(session, since)
        proposals = await db_queries.get_recent_calibration_proposals(session, since)

        project_ids = {m.project_id for m in matches}
        project_ids |= {i.project_id for i in insights if i.project_id is not None}
        project_ids |= {p.project_id for p in proposals if p.project_id is not None}
        names = await db_queries.get_project_names(session, project_ids)

        matrices = await db_queries.get_latest_score_matrices(session, {m.project_id for m in matches})
        decisions = db_queries.decisions_from_matrices(matrices)

        return AlertEvaluationInput(
            price_change_events=price_events,
            project_insights=insights,
            recent_comparisons=comparisons,
            pattern_matches=matches,
            patterns=patterns,
            project_names=names,
            project_decisions=decisions,
            accuracy_snapshot=snapshot,
            pending_suggestions=suggestions,
            calibration_proposals=proposals,
        )


class LearningPipeline:
    """
    Weekly learning run. Stateless between runs; all state is in the store.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        config: Optional[Settings] = None,
        alert_pipeline: Optional[AlertPipeline] = None,
    ):
        self.session_factory = session_factory
        self.config = config or default_settings
        self.comparator = OutcomeComparator()
        self.ledger = AccuracyLedger()
        self.calibrator = BenchmarkCalibrator()
        self.weights = WeightSensitivityAnalyzer()
        self.matcher = PatternMatcher()
        self.alerts = alert_pipeline or AlertPipeline(session_factory, self.config)

    async def run(self, now: Optional[datetime] = None) -> PipelineRunReport:
        when = now or datetime.utcnow()
        report = PipelineRunReport(run="learning", started_at=when)
        logger.info("learning_run_started")

        await self._stage(report, "comparisons", self._compare_new_outcomes, report, when)

        try:
            async with self.session_factory() as session:
                comparisons = await db_queries.get_all_comparisons(session)
                matrices = await db_queries.get_latest_score_matrices(
                    session, {c.project_id for c in comparisons},
                )
                predictions, skipped = db_queries.predictions_from_matrices(matrices)
        except Exception as e:
            logger.error("learning_context_failed", error=str(e))
            report.errors["context"] = str(e)
            report.finished_at = datetime.utcnow()
            return report

        report.counts["total_comparisons"] = len(comparisons)
        report.counts["skipped_matrices"] = len(skipped)

        await self._stage(report, "snapshot", self._write_snapshot, comparisons, when)
        await self._stage(report, "suggestions", self._write_suggestions, comparisons)
        await self._stage(report, "weights", self._write_weight_proposals, comparisons, predictions)
        await self._stage(report, "patterns", self._write_pattern_matches, comparisons, predictions, when)

        alert_report = await self.alerts.run(now=when)
        report.merge(alert_report, "alerts")

        report.finished_at = datetime.utcnow()
        logger.info(
            "learning_run_completed",
            counts=report.counts,
            failed_stages=sorted(report.errors),
        )
        return report

    async def _stage(self, report: PipelineRunReport, name: str, fn, *args) -> None:
        try:
            report.counts[name] = await fn(*args)
        except Exception as e:
            logger.error("learning_stage_failed", stage=name, error=str(e))
            report.errors[name] = str(e)

    # ── Stages ─────────────────────────────────────────────────────────

    async def _compare_new_outcomes(self, report: PipelineRunReport, now: datetime) -> int:
        created = 0
        async with self.session_factory() as session:
            outcomes = [
                db_queries.outcome_from_row(r) for r in await db_queries.get_uncompared_outcomes(session)
            ]
            if not outcomes:
                return 0
            # Convert before inserting: a rollback expires loaded rows
            predictions, skipped = db_queries.predictions_from_matrices(
                await db_queries.get_latest_score_matrices(session, {o.project_id for o in outcomes})
            )
            # Outcomes behind a malformed matrix stay uncompared until it is rescored
            held_back = [o for o in outcomes if o.project_id in skipped]
            report.counts["comparisons_skipped"] = len(held_back)
            for outcome in outcomes:
                if outcome.project_id in skipped:
                    continue
                comparison = self.comparator.compare(
                    predictions.get(outcome.project_id), outcome, compared_at=outcome.captured_at or now,
                )
                if await db_queries.insert_comparison(session, comparison):
                    created += 1
        logger.info(
            "outcome_comparisons_created",
            count=created,
            pending=len(outcomes),
            held_back=len(held_back),
        )
        return created

    async def _write_snapshot(self, comparisons: list[OutcomeComparison], now: datetime) -> int:
        snapshot = self.ledger.compute(comparisons)
        async with self.session_factory() as session:
            await db_queries.insert_accuracy_snapshot(session, snapshot, snapshot_date=now)
        logger.info(
            "accuracy_snapshot_generated",
            total=snapshot.total_comparisons,
            platform_accuracy=snapshot.overall_platform_accuracy,
            cost_trend=snapshot.cost_trend.value,
        )
        return 1

    async def _write_suggestions(self, comparisons: list[OutcomeComparison]) -> int:
        async with self.session_factory() as session:
            classifications = await db_queries.get_project_classifications(
                session, {c.project_id for c in comparisons},
            )
            suggestions = self.calibrator.generate_suggestions(comparisons, classifications)
            inserted = 0
            for suggestion in suggestions:
                if await db_queries.insert_benchmark_suggestion_if_new(session, suggestion):
                    inserted += 1
        return inserted

    async def _write_weight_proposals(
        self,
        comparisons: list[OutcomeComparison],
        predictions: dict[int, PredictionBundle],
    ) -> int:
        contributions = {pid: p.contributions for pid, p in predictions.items()}
        async with self.session_factory() as session:
            version_id = await db_queries.get_active_logic_version_id(session)
            proposals = self.weights.analyze(comparisons, contributions, version_id)
            inserted = 0
            for proposal in proposals:
                if await db_queries.insert_logic_change_if_new(session, proposal):
                    inserted += 1
        return inserted

    async def _write_pattern_matches(
        self,
        comparisons: list[OutcomeComparison],
        predictions: dict[int, PredictionBundle],
        now: datetime,
    ) -> int:
        score_vectors = {pid: p.dimension_scores for pid, p in predictions.items()}
        async with self.session_factory() as session:
            await db_queries.seed_patterns_if_empty(session, SEED_PATTERNS)
            library = await db_queries.load_patterns(session)
            existing = await db_queries.get_existing_match_keys(session)

            matches = self.matcher.extract_validated_matches(
                comparisons, score_vectors, library, existing=existing, matched_at=now,
            )
            inserted = 0
            for match in matches:
                if await db_queries.insert_pattern_match(session, match):
                    inserted += 1

            stats = self.matcher.compute_reliability(comparisons, score_vectors, library)
            await db_queries.update_pattern_stats(session, stats)
        return inserted
