"""
Alert Engine — rule-based platform alerts from learning + market inputs.

Six independent rules, each producing zero or more candidates:
1. price_shock          (critical)  significant price-change event
2. project_at_risk      (high)      match on a low-reliability risk pattern
3. validation_conflict  (high)      validated project matches a risk pattern
4. accuracy_degraded    (high)      platform accuracy below 60%
5. benchmark_drift      (medium)    calibration proposal implying >15% drift
6. market_opportunity   (medium)    qualifying market-opportunity insight

The engine only builds candidates. Dedup against active alerts is the
AlertDeduplicator's job; persistence and delivery belong to the pipeline.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog

from miyar.alerting.schemas import (
    SEVERITY_TTL,
    AlertEvaluationInput,
    AlertSeverity,
    AlertType,
    PlatformAlert,
)
from miyar.learning.schemas import DecisionStatus, PatternCategory

logger = structlog.get_logger(__name__)

PRICE_SHOCK_SEVERITY: str = "significant"

# Risk patterns whose matching projects succeed less often than this
LOW_RELIABILITY_THRESHOLD: float = 0.40

# Overall platform accuracy (%) below this degrades
ACCURACY_ALERT_THRESHOLD: float = 60.0

# Drift fraction above this is worth a look
BENCHMARK_DRIFT_THRESHOLD: float = 0.15

MARKET_OPPORTUNITY_INSIGHT: str = "market_opportunity"
MARKET_OPPORTUNITY_SEVERITIES: frozenset[str] = frozenset({"critical", "warning"})


class AlertEngine:
    """
    Evaluates all alert rules against one input bundle.

    Stateless: the same inputs and clock produce the same candidates.
    """

    def __init__(
        self,
        accuracy_threshold: float = ACCURACY_ALERT_THRESHOLD,
        drift_threshold: float = BENCHMARK_DRIFT_THRESHOLD,
        reliability_threshold: float = LOW_RELIABILITY_THRESHOLD,
    ):
        self.accuracy_threshold = accuracy_threshold
        self.drift_threshold = drift_threshold
        self.reliability_threshold = reliability_threshold
        self._rules: list[Callable[[AlertEvaluationInput, datetime], list[PlatformAlert]]] = [
            self._price_shock,
            self._project_at_risk,
            self._validation_conflict,
            self._accuracy_degraded,
            self._benchmark_drift,
            self._market_opportunity,
        ]

    def evaluate(
        self,
        inputs: AlertEvaluationInput,
        now: Optional[datetime] = None,
    ) -> list[PlatformAlert]:
        """
        Run every rule and collect alert candidates.

        Args:
            inputs: Market events, insights, comparisons, matches, latest
                snapshot and pending calibration proposals
            now: Evaluation time (defaults to utcnow); drives expiry

        Returns:
            Candidate alerts, not yet deduplicated
        """
        when = now or datetime.utcnow()
        candidates: list[PlatformAlert] = []
        for rule in self._rules:
            fired = rule(inputs, when)
            candidates.extend(fired)

        logger.info(
            "alert_rules_evaluated",
            candidates=len(candidates),
            by_type={t.value: sum(1 for c in candidates if c.alert_type == t) for t in AlertType},
        )
        return candidates

    # ── Rules ──────────────────────────────────────────────────────────

    def _price_shock(self, inputs: AlertEvaluationInput, now: datetime) -> list[PlatformAlert]:
        alerts = []
        for event in inputs.price_change_events:
            if event.severity != PRICE_SHOCK_SEVERITY:
                continue
            alerts.append(self._build(
                AlertType.PRICE_SHOCK,
                AlertSeverity.CRITICAL,
                now,
                title="Significant Price Shock Detected",
                body=f"The price of {event.item_name} shifted by {event.change_pct}%",
                affected_categories=[event.category],
                trigger_data=event.model_dump(mode="json"),
                suggested_action="Review material cost dependencies and update affected budgets.",
            ))
        return alerts

    def _project_at_risk(self, inputs: AlertEvaluationInput, now: datetime) -> list[PlatformAlert]:
        alerts = []
        for match in inputs.pattern_matches:
            pattern = inputs.patterns.get(match.pattern_id)
            if pattern is None or pattern.category != PatternCategory.RISK_INDICATOR:
                continue
            reliability = pattern.reliability_score
            if reliability is None or reliability >= self.reliability_threshold:
                continue
            name = inputs.project_names.get(match.project_id, f"#{match.project_id}")
            alerts.append(self._build(
                AlertType.PROJECT_AT_RISK,
                AlertSeverity.HIGH,
                now,
                title="High-Risk Pattern Matched",
                body=(
                    f"Project '{name}' matched risk pattern '{pattern.name}' "
                    f"(historical success rate {reliability:.0%})."
                ),
                affected_project_ids=[match.project_id],
                trigger_data={
                    "match": match.model_dump(mode="json"),
                    "pattern_id": pattern.id,
                    "reliability_score": reliability,
                },
                suggested_action="Implement strict preventative measures immediately.",
            ))
        return alerts

    def _validation_conflict(self, inputs: AlertEvaluationInput, now: datetime) -> list[PlatformAlert]:
        decisions = dict(inputs.project_decisions)
        for comp in inputs.recent_comparisons:
            decisions.setdefault(comp.project_id, comp.predicted_decision)

        alerts = []
        for match in inputs.pattern_matches:
            pattern = inputs.patterns.get(match.pattern_id)
            if pattern is None or pattern.category != PatternCategory.RISK_INDICATOR:
                continue
            if decisions.get(match.project_id) != DecisionStatus.VALIDATED:
                continue
            name = inputs.project_names.get(match.project_id, f"#{match.project_id}")
            alerts.append(self._build(
                AlertType.VALIDATION_CONFLICT,
                AlertSeverity.HIGH,
                now,
                title="Validated Project Matches Risk Pattern",
                body=f"Project '{name}' was validated but matches risk pattern '{pattern.name}'.",
                affected_project_ids=[match.project_id],
                trigger_data={"match": match.model_dump(mode="json"), "pattern_id": pattern.id},
                suggested_action="Re-review the validation decision against the matched risk conditions.",
            ))
        return alerts

    def _accuracy_degraded(self, inputs: AlertEvaluationInput, now: datetime) -> list[PlatformAlert]:
        snapshot = inputs.accuracy_snapshot
        if snapshot is None or snapshot.graded_count == 0:
            return []
        accuracy = float(snapshot.overall_platform_accuracy)
        if accuracy >= self.accuracy_threshold:
            return []
        return [self._build(
            AlertType.ACCURACY_DEGRADED,
            AlertSeverity.HIGH,
            now,
            title="Platform Accuracy Degraded",
            body=f"Overall platform prediction accuracy dropped to {snapshot.overall_platform_accuracy}%.",
            trigger_data=snapshot.model_dump(mode="json"),
            suggested_action="Audit learning weights and calibration multipliers.",
        )]

    def _benchmark_drift(self, inputs: AlertEvaluationInput, now: datetime) -> list[PlatformAlert]:
        alerts = []
        for suggestion in inputs.pending_suggestions:
            drift = suggestion.implied_drift
            if drift <= self.drift_threshold:
                continue
            alerts.append(self._build(
                AlertType.BENCHMARK_DRIFT,
                AlertSeverity.MEDIUM,
                now,
                title="Benchmark Calibration Drift",
                body=(
                    f"Outcomes for {suggestion.typology}/{suggestion.tier} imply "
                    f"{drift:.0%} cost drift (proposed step {suggestion.change_map()})."
                ),
                affected_categories=[f"{suggestion.typology}|{suggestion.tier}"],
                trigger_data=suggestion.model_dump(mode="json"),
                suggested_action="Review calibration proposals and update material baseline bands.",
            ))
        for proposal in inputs.calibration_proposals:
            if proposal.calibration_factor <= self.drift_threshold:
                continue
            alerts.append(self._build(
                AlertType.BENCHMARK_DRIFT,
                AlertSeverity.MEDIUM,
                now,
                title="Benchmark Calibration Drift",
                body=(
                    f"A benchmark proposal requires >{self.drift_threshold:.0%} drift "
                    f"adjustment ({proposal.calibration_factor})."
                ),
                affected_project_ids=[proposal.project_id] if proposal.project_id else [],
                trigger_data=proposal.model_dump(mode="json"),
                suggested_action="Review calibration proposals and update material baseline bands.",
            ))
        return alerts

    def _market_opportunity(self, inputs: AlertEvaluationInput, now: datetime) -> list[PlatformAlert]:
        alerts = []
        for insight in inputs.project_insights:
            if insight.insight_type != MARKET_OPPORTUNITY_INSIGHT:
                continue
            if insight.severity not in MARKET_OPPORTUNITY_SEVERITIES:
                continue
            alerts.append(self._build(
                AlertType.MARKET_OPPORTUNITY,
                AlertSeverity.MEDIUM,
                now,
                title="Market Opportunity Identified",
                body=insight.title,
                affected_project_ids=[insight.project_id] if insight.project_id else [],
                trigger_data=insight.model_dump(mode="json"),
                suggested_action=(
                    insight.actionable_recommendation
                    or "Investigate the newly generated opportunity parameters."
                ),
            ))
        return alerts

    # ── Helpers ────────────────────────────────────────────────────────

    @staticmethod
    def _build(
        alert_type: AlertType,
        severity: AlertSeverity,
        now: datetime,
        *,
        title: str,
        body: str,
        affected_project_ids: Optional[list[int]] = None,
        affected_categories: Optional[list[str]] = None,
        trigger_data: Optional[dict] = None,
        suggested_action: str = "",
    ) -> PlatformAlert:
        return PlatformAlert(
            alert_type=alert_type,
            severity=severity,
            title=title,
            body=body,
            affected_project_ids=sorted(set(affected_project_ids or [])),
            affected_categories=affected_categories or [],
            trigger_data=trigger_data or {},
            suggested_action=suggested_action,
            created_at=now,
            expires_at=now + SEVERITY_TTL[severity],
        )
