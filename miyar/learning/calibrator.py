"""
Benchmark Calibrator — propose benchmark corrections from consistent drift.

Groups comparisons by (typology, tier), tallies cost / risk learning
signals per group, and proposes an adjustment only when one direction
clearly dominates. Every suggestion is created `pending`; nothing here
touches live benchmark prices.
"""

from collections import defaultdict
from typing import Iterable, Optional, Sequence, Union

import structlog

from miyar.learning.schemas import (
    AdjustmentDirection,
    BenchmarkSuggestion,
    CostSuggestion,
    LearningSignalType,
    OutcomeComparison,
    ProjectClassification,
    RiskSuggestion,
)

logger = structlog.get_logger(__name__)

# Groups smaller than this are statistically meaningless
MIN_GROUP_SIZE: int = 3

# A direction needs at least this many signals to dominate
MIN_DOMINANT_SIGNALS: int = 3

# ...and more than this multiple of the opposing count
DOMINANCE_RATIO: float = 2.0

# One calibration step never moves cost by more than this (%)
MAX_COST_CHANGE_PCT: float = 15.0

# Risk multiplier steps are fixed, not averaged
RISK_INCREASE_DELTA: float = 0.10
RISK_DECREASE_DELTA: float = -0.05

# Confidence tiers by dominant signal count
HIGH_CONFIDENCE_COUNT: int = 5
HIGH_CONFIDENCE: float = 0.90
MEDIUM_CONFIDENCE: float = 0.75

DEFAULT_TYPOLOGY: str = "Residential"
DEFAULT_TIER: str = "Mid"


class _SignalTally:
    """Count + summed magnitude for one signal type."""

    def __init__(self):
        self.count = 0
        self.magnitude = 0.0

    def add(self, magnitude: float) -> None:
        self.count += 1
        self.magnitude += magnitude

    @property
    def mean(self) -> float:
        return self.magnitude / self.count if self.count else 0.0


class BenchmarkCalibrator:
    """
    Generates benchmark suggestions per (typology, tier) group.

    Stateless; safe to call concurrently.
    """

    def __init__(
        self,
        min_group_size: int = MIN_GROUP_SIZE,
        min_dominant: int = MIN_DOMINANT_SIGNALS,
        max_cost_change_pct: float = MAX_COST_CHANGE_PCT,
    ):
        self.min_group_size = min_group_size
        self.min_dominant = min_dominant
        self.max_cost_change_pct = max_cost_change_pct

    def generate_suggestions(
        self,
        comparisons: Sequence[OutcomeComparison],
        classifications: Union[Iterable[ProjectClassification], dict[int, ProjectClassification]],
    ) -> list[BenchmarkSuggestion]:
        """
        Propose benchmark adjustments.

        Args:
            comparisons: Graded comparisons (any order)
            classifications: Project → (typology, tier); comparisons whose
                project is unknown are skipped

        Returns:
            Pending suggestions, one per qualifying group at most
        """
        if isinstance(classifications, dict):
            by_project = classifications
        else:
            by_project = {c.project_id: c for c in classifications}

        groups: dict[tuple[str, str], list[OutcomeComparison]] = defaultdict(list)
        for comp in comparisons:
            project = by_project.get(comp.project_id)
            if project is None:
                continue
            key = (project.typology or DEFAULT_TYPOLOGY, project.tier or DEFAULT_TIER)
            groups[key].append(comp)

        suggestions: list[BenchmarkSuggestion] = []
        for (typology, tier), members in groups.items():
            if len(members) < self.min_group_size:
                logger.debug(
                    "calibration_group_too_small",
                    typology=typology,
                    tier=tier,
                    size=len(members),
                )
                continue

            suggestion = self._suggest_for_group(typology, tier, members)
            if suggestion is not None:
                suggestions.append(suggestion)

        logger.info(
            "benchmark_suggestions_generated",
            groups=len(groups),
            suggestions=len(suggestions),
        )
        return suggestions

    def _suggest_for_group(
        self,
        typology: str,
        tier: str,
        members: list[OutcomeComparison],
    ) -> Optional[BenchmarkSuggestion]:
        tallies: dict[LearningSignalType, _SignalTally] = defaultdict(_SignalTally)
        for comp in members:
            for sig in comp.learning_signals:
                tallies[sig.signal_type].add(sig.magnitude)

        cost_under = tallies[LearningSignalType.COST_UNDER_PREDICTED]
        cost_over = tallies[LearningSignalType.COST_OVER_PREDICTED]
        risk_under = tallies[LearningSignalType.RISK_UNDER_PREDICTED]
        risk_over = tallies[LearningSignalType.RISK_OVER_PREDICTED]

        changes: list[Union[CostSuggestion, RiskSuggestion]] = []
        dominant_count = 0

        # ── Cost ──────────────────────────────────────────────────────
        if self._dominates(cost_under, cost_over):
            changes.append(CostSuggestion(
                direction=AdjustmentDirection.INCREASE,
                change_pct=min(cost_under.mean, self.max_cost_change_pct),
                raw_mean_pct=cost_under.mean,
                signal_count=cost_under.count,
            ))
            dominant_count = max(dominant_count, cost_under.count)
        elif self._dominates(cost_over, cost_under):
            changes.append(CostSuggestion(
                direction=AdjustmentDirection.DECREASE,
                change_pct=-min(cost_over.mean, self.max_cost_change_pct),
                raw_mean_pct=cost_over.mean,
                signal_count=cost_over.count,
            ))
            dominant_count = max(dominant_count, cost_over.count)

        # ── Risk ──────────────────────────────────────────────────────
        if self._dominates(risk_under, risk_over):
            changes.append(RiskSuggestion(
                direction=AdjustmentDirection.INCREASE,
                delta=RISK_INCREASE_DELTA,
                signal_count=risk_under.count,
            ))
            dominant_count = max(dominant_count, risk_under.count)
        elif self._dominates(risk_over, risk_under):
            changes.append(RiskSuggestion(
                direction=AdjustmentDirection.DECREASE,
                delta=RISK_DECREASE_DELTA,
                signal_count=risk_over.count,
            ))
            dominant_count = max(dominant_count, risk_over.count)

        if not changes:
            return None

        confidence = self._confidence(dominant_count)
        if confidence is None:
            # Unreachable while MIN_DOMINANT_SIGNALS >= 3
            return None

        return BenchmarkSuggestion(
            typology=typology,
            tier=tier,
            based_on_outcomes_query=f"typology={typology}&tier={tier}",
            changes=changes,
            confidence=f"{confidence:.4f}",
            sample_size=len(members),
            reviewer_notes=(
                f"Auto-generated from {len(members)} recent outcomes "
                f"demonstrating consistent prediction drift."
            ),
        )

    def _dominates(self, side: _SignalTally, opposing: _SignalTally) -> bool:
        return side.count >= self.min_dominant and side.count > opposing.count * DOMINANCE_RATIO

    @staticmethod
    def _confidence(dominant_count: int) -> Optional[float]:
        if dominant_count >= HIGH_CONFIDENCE_COUNT:
            return HIGH_CONFIDENCE
        if dominant_count >= 3:
            return MEDIUM_CONFIDENCE
        return None


def generate_suggestions(
    comparisons: Sequence[OutcomeComparison],
    classifications: Union[Iterable[ProjectClassification], dict[int, ProjectClassification]],
) -> list[BenchmarkSuggestion]:
    """Module-level convenience using default thresholds."""
    return BenchmarkCalibrator().generate_suggestions(comparisons, classifications)
