"""
Weight Sensitivity Analyzer — which dimension keeps causing missed calls?

For every score miss:
- false negative (predicted not_validated, actually succeeded): blame the
  dimension with the most negative contribution
- false positive (predicted validated, actually failed): blame the
  dimension with the most positive contribution

A dimension blamed often enough, and for most of its miss category,
yields a `proposed` change-log entry. Nothing is applied automatically.
"""

from collections import Counter
from typing import Mapping, Optional, Sequence

import structlog

from miyar.learning.schemas import (
    DecisionStatus,
    DimensionContribution,
    MissKind,
    OutcomeComparison,
    WeightChangeProposal,
)

logger = structlog.get_logger(__name__)

# Fewer misses than this are not evidence of anything
MIN_MISSES: int = 5

# A dimension must be blamed at least this often...
MIN_DIMENSION_OCCURRENCES: int = 5

# ...and for more than this share of its miss category
DOMINANT_SHARE: float = 0.5

WEIGHT_STEP_PCT: int = 5


def _most_negative(contributions: Sequence[DimensionContribution]) -> Optional[str]:
    worst = min(contributions, key=lambda c: c.contribution, default=None)
    return worst.dimension if worst else None


def _most_positive(contributions: Sequence[DimensionContribution]) -> Optional[str]:
    best = max(contributions, key=lambda c: c.contribution, default=None)
    return best.dimension if best else None


def classify_miss(comparison: OutcomeComparison) -> Optional[MissKind]:
    """FN / FP for a score miss; None for conditional misses."""
    if (
        comparison.predicted_decision == DecisionStatus.NOT_VALIDATED
        and comparison.actual_outcome_success
    ):
        return MissKind.FALSE_NEGATIVE
    if (
        comparison.predicted_decision == DecisionStatus.VALIDATED
        and not comparison.actual_outcome_success
    ):
        return MissKind.FALSE_POSITIVE
    return None


class WeightSensitivityAnalyzer:
    """
    Proposes scoring-weight changes from recurring score misses.

    Stateless; safe to call concurrently.
    """

    def __init__(
        self,
        min_misses: int = MIN_MISSES,
        min_occurrences: int = MIN_DIMENSION_OCCURRENCES,
        dominant_share: float = DOMINANT_SHARE,
    ):
        self.min_misses = min_misses
        self.min_occurrences = min_occurrences
        self.dominant_share = dominant_share

    def analyze(
        self,
        comparisons: Sequence[OutcomeComparison],
        contributions: Mapping[int, Sequence[DimensionContribution]],
        active_logic_version_id: int,
    ) -> list[WeightChangeProposal]:
        """
        Args:
            comparisons: Graded comparisons
            contributions: project_id → contributions recorded at prediction time
            active_logic_version_id: Logic version the proposals target

        Returns:
            Proposed change-log entries (possibly several per run)
        """
        misses = [c for c in comparisons if not c.score_prediction_correct]
        if len(misses) < self.min_misses:
            return []

        causes: dict[MissKind, Counter] = {
            MissKind.FALSE_NEGATIVE: Counter(),
            MissKind.FALSE_POSITIVE: Counter(),
        }
        totals: Counter = Counter()

        for miss in misses:
            project_contributions = contributions.get(miss.project_id)
            if not project_contributions:
                continue

            kind = classify_miss(miss)
            if kind is None:
                continue
            totals[kind] += 1

            if kind == MissKind.FALSE_NEGATIVE:
                dimension = _most_negative(project_contributions)
            else:
                dimension = _most_positive(project_contributions)
            if dimension:
                causes[kind][dimension] += 1

        proposals: list[WeightChangeProposal] = []
        for kind in (MissKind.FALSE_NEGATIVE, MissKind.FALSE_POSITIVE):
            for dimension, count in causes[kind].items():
                if count >= self.min_occurrences and count > totals[kind] * self.dominant_share:
                    proposals.append(
                        self._proposal(kind, dimension, count, totals[kind], active_logic_version_id)
                    )

        logger.info(
            "weight_sensitivity_analyzed",
            misses=len(misses),
            false_negatives=totals[MissKind.FALSE_NEGATIVE],
            false_positives=totals[MissKind.FALSE_POSITIVE],
            proposals=len(proposals),
        )
        return proposals

    @staticmethod
    def _proposal(
        kind: MissKind,
        dimension: str,
        count: int,
        total: int,
        logic_version_id: int,
    ) -> WeightChangeProposal:
        if kind == MissKind.FALSE_NEGATIVE:
            summary = f"Suggested: Reduce penalty weighting for {dimension} by {WEIGHT_STEP_PCT}%"
            rationale = (
                f"The {dimension} dimension was the dominant negative factor in {count} "
                f"projects that were predicted to fail but actually succeeded (False Negatives). "
                f"The algorithm is currently too pessimistic regarding {dimension} penalties."
            )
        else:
            summary = (
                f"Suggested: Increase penalty stringency or reduce weight for "
                f"{dimension} by {WEIGHT_STEP_PCT}%"
            )
            rationale = (
                f"The {dimension} dimension was the dominant positive factor in {count} "
                f"projects that were predicted to succeed but actually failed (False Positives). "
                f"The algorithm is currently too lenient regarding {dimension}."
            )
        return WeightChangeProposal(
            logic_version_id=logic_version_id,
            dimension=dimension,
            miss_kind=kind,
            occurrences=count,
            category_total=total,
            change_summary=summary,
            rationale=rationale,
        )


def analyze(
    comparisons: Sequence[OutcomeComparison],
    contributions: Mapping[int, Sequence[DimensionContribution]],
    active_logic_version_id: int,
) -> list[WeightChangeProposal]:
    """Module-level convenience using default thresholds."""
    return WeightSensitivityAnalyzer().analyze(comparisons, contributions, active_logic_version_id)
