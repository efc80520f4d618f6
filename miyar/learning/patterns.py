"""
Pattern Extractor / Matcher — data-driven decision patterns.

Patterns are data: a list of (dimension, operator, threshold) conditions
interpreted by a small evaluator, so the library can be edited without
redeploying the matcher.

- match(): structural match of one score vector against the library
- extract_validated_matches(): structural match + outcome validation
- compute_pattern_reliability(): historical success rate per pattern
"""

from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

import structlog

from miyar.learning.schemas import (
    ConditionOperator,
    DecisionPattern,
    MatchContext,
    OutcomeComparison,
    PatternCategory,
    PatternCondition,
    PatternStats,
    ProjectPatternMatch,
)

logger = structlog.get_logger(__name__)

# Cost anomaly patterns need at least this much under-prediction (%)
COST_ANOMALY_DELTA_PCT: float = 10.0

VALIDATED_MATCH_CONFIDENCE: str = "1.00"


def _cond(dimension: str, operator: str, value: float) -> PatternCondition:
    return PatternCondition(dimension=dimension, operator=ConditionOperator(operator), value=value)


# Seed library — inserted into the store when the pattern table is empty.
SEED_PATTERNS: list[DecisionPattern] = [
    DecisionPattern(
        id=1,
        name="High Complexity + Low Execution Readiness",
        description=(
            "Projects with highly complex spatial configurations but poor execution "
            "planning correlate strongly with severe rework."
        ),
        category=PatternCategory.RISK_INDICATOR,
        conditions=[_cond("SA", "<", 40), _cond("ER", "<", 40)],
    ),
    DecisionPattern(
        id=2,
        name="Excellent Delivery + Premium Materials",
        description=(
            "Projects exhibiting strong execution readiness coupled with top-tier "
            "material provenances reliably deliver high client satisfaction."
        ),
        category=PatternCategory.SUCCESS_DRIVER,
        conditions=[_cond("ER", ">", 80), _cond("MP", ">", 80)],
    ),
    DecisionPattern(
        id=3,
        name="Financial Friction + Poor Data Quality",
        description=(
            "When procurement liquidity is tight and the underlying project data is "
            "poor, cost overruns are highly probable."
        ),
        category=PatternCategory.COST_ANOMALY,
        conditions=[_cond("FF", "<", 40), _cond("DS", "<", 40)],
    ),
    DecisionPattern(
        id=4,
        name="Rushed Delivery Risk",
        description=(
            "Very low execution readiness paired with average complexity often masks "
            "rushed timelines, leading to missed delivery dates."
        ),
        category=PatternCategory.RISK_INDICATOR,
        conditions=[_cond("ER", "<", 30), _cond("SA", ">", 40), _cond("SA", "<", 70)],
    ),
    DecisionPattern(
        id=5,
        name="Balanced Fundamentals Core",
        description=(
            "Projects maintaining above-average scores across all five intelligence "
            "lenses demonstrate resilient success rates."
        ),
        category=PatternCategory.SUCCESS_DRIVER,
        conditions=[
            _cond("SA", ">", 60),
            _cond("FF", ">", 60),
            _cond("MP", ">", 60),
            _cond("DS", ">", 60),
            _cond("ER", ">", 60),
        ],
    ),
]


def check_condition(operator: ConditionOperator, value: float, threshold: float) -> bool:
    """Evaluate one condition."""
    if operator == ConditionOperator.LT:
        return value < threshold
    elif operator == ConditionOperator.GT:
        return value > threshold
    elif operator == ConditionOperator.LTE:
        return value <= threshold
    elif operator == ConditionOperator.GTE:
        return value >= threshold
    elif operator == ConditionOperator.EQ:
        return abs(value - threshold) < 1e-9
    return False


def outcome_validates(pattern: DecisionPattern, comparison: OutcomeComparison) -> bool:
    """Does the actual outcome back up this structural match?"""
    if pattern.category == PatternCategory.RISK_INDICATOR:
        return comparison.actual_rework_occurred or not comparison.actual_outcome_success
    if pattern.category == PatternCategory.SUCCESS_DRIVER:
        return comparison.actual_outcome_success and not comparison.actual_rework_occurred
    if pattern.category == PatternCategory.COST_ANOMALY:
        return (
            comparison.cost_delta_pct is not None
            and comparison.cost_delta_pct > COST_ANOMALY_DELTA_PCT
        )
    return False


class PatternMatcher:
    """Evaluates score vectors against a pattern library. Stateless."""

    def match(
        self,
        scores: Mapping[str, float],
        library: Sequence[DecisionPattern],
    ) -> list[DecisionPattern]:
        """
        Patterns whose every condition holds for this vector.

        A dimension missing from the vector fails the pattern.
        """
        matched: list[DecisionPattern] = []
        for pattern in library:
            if self._matches(scores, pattern):
                matched.append(pattern)
        return matched

    def extract_validated_matches(
        self,
        comparisons: Sequence[OutcomeComparison],
        score_vectors: Mapping[int, Mapping[str, float]],
        library: Sequence[DecisionPattern],
        existing: Optional[Iterable[tuple[int, int]]] = None,
        matched_at: Optional[datetime] = None,
    ) -> list[ProjectPatternMatch]:
        """
        Structural matches that the actual outcome validates.

        Args:
            comparisons: Graded comparisons
            score_vectors: project_id → dimension scores
            library: Pattern library
            existing: (project_id, pattern_id) pairs already recorded; skipped
            matched_at: Timestamp for new matches (defaults to now)

        Returns:
            New, deduplicated ProjectPatternMatch records
        """
        seen: set[tuple[int, int]] = set(existing or ())
        when = matched_at or datetime.utcnow()
        matches: list[ProjectPatternMatch] = []
        discarded = 0

        for comp in comparisons:
            scores = score_vectors.get(comp.project_id)
            if scores is None:
                continue

            for pattern in self.match(scores, library):
                key = (comp.project_id, pattern.id)
                if key in seen:
                    continue
                if not outcome_validates(pattern, comp):
                    discarded += 1
                    continue

                seen.add(key)
                matches.append(ProjectPatternMatch(
                    project_id=comp.project_id,
                    pattern_id=pattern.id,
                    matched_at=when,
                    confidence=VALIDATED_MATCH_CONFIDENCE,
                    context_snapshot=MatchContext(
                        scores=dict(scores),
                        outcome_delta=comp.cost_delta_pct,
                        success=comp.actual_outcome_success,
                    ),
                ))

        logger.info(
            "pattern_matches_extracted",
            validated=len(matches),
            discarded_unvalidated=discarded,
        )
        return matches

    def compute_reliability(
        self,
        comparisons: Sequence[OutcomeComparison],
        score_vectors: Mapping[int, Mapping[str, float]],
        library: Sequence[DecisionPattern],
    ) -> dict[int, PatternStats]:
        """Success rate of projects structurally matching each pattern."""
        stats = {p.id: PatternStats(pattern_id=p.id) for p in library}
        for comp in comparisons:
            scores = score_vectors.get(comp.project_id)
            if scores is None:
                continue
            for pattern in self.match(scores, library):
                entry = stats[pattern.id]
                entry.match_count += 1
                if comp.actual_outcome_success:
                    entry.success_count += 1
        return stats

    @staticmethod
    def _matches(scores: Mapping[str, float], pattern: DecisionPattern) -> bool:
        for cond in pattern.conditions:
            actual = scores.get(cond.dimension)
            if actual is None:
                return False
            if not check_condition(cond.operator, actual, cond.value):
                return False
        return True


def match_patterns(
    scores: Mapping[str, float],
    library: Sequence[DecisionPattern] = SEED_PATTERNS,
) -> list[DecisionPattern]:
    return PatternMatcher().match(scores, library)


def extract_validated_matches(
    comparisons: Sequence[OutcomeComparison],
    score_vectors: Mapping[int, Mapping[str, float]],
    library: Sequence[DecisionPattern] = SEED_PATTERNS,
) -> list[ProjectPatternMatch]:
    return PatternMatcher().extract_validated_matches(comparisons, score_vectors, library)


def compute_pattern_reliability(
    comparisons: Sequence[OutcomeComparison],
    score_vectors: Mapping[int, Mapping[str, float]],
    library: Sequence[DecisionPattern] = SEED_PATTERNS,
) -> dict[int, PatternStats]:
    return PatternMatcher().compute_reliability(comparisons, score_vectors, library)
