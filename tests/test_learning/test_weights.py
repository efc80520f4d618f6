"""
Tests for the Weight Sensitivity Analyzer.

Covers:
- Fewer than 5 misses → nothing
- False negatives blamed on the most negative contributor
- False positives blamed on the most positive contributor
- Conditional misses and projects without contributions are ignored
"""

from datetime import datetime

from miyar.learning.schemas import (
    ChangeLogStatus,
    DecisionStatus,
    DimensionContribution,
    MissKind,
    OutcomeComparison,
)
from miyar.learning.weights import WeightSensitivityAnalyzer, analyze, classify_miss

VERSION_ID = 7


def _miss(project_id: int, decision: DecisionStatus, success: bool) -> OutcomeComparison:
    return OutcomeComparison(
        project_id=project_id,
        compared_at=datetime(2026, 3, 1),
        predicted_decision=decision,
        actual_outcome_success=success,
        score_prediction_correct=False,
    )


def _contribs(**by_dimension: float) -> list[DimensionContribution]:
    return [
        DimensionContribution(variable=f"{dim.lower()}_var", dimension=dim, contribution=value)
        for dim, value in by_dimension.items()
    ]


def _false_negatives(n: int) -> list[OutcomeComparison]:
    return [_miss(p, DecisionStatus.NOT_VALIDATED, True) for p in range(1, n + 1)]


# ── Classification ────────────────────────────────────────────────────


class TestClassifyMiss:
    def test_false_negative(self):
        assert classify_miss(_miss(1, DecisionStatus.NOT_VALIDATED, True)) == MissKind.FALSE_NEGATIVE

    def test_false_positive(self):
        assert classify_miss(_miss(1, DecisionStatus.VALIDATED, False)) == MissKind.FALSE_POSITIVE

    def test_conditional_is_neither(self):
        assert classify_miss(_miss(1, DecisionStatus.CONDITIONAL, True)) is None


# ── Analysis ──────────────────────────────────────────────────────────


class TestAnalyze:
    def test_four_misses_yield_nothing(self):
        comps = _false_negatives(4)
        contributions = {c.project_id: _contribs(FF=-0.4, SA=0.2) for c in comps}
        assert analyze(comps, contributions, VERSION_ID) == []

    def test_five_false_negatives_same_dimension(self):
        comps = _false_negatives(5)
        contributions = {c.project_id: _contribs(FF=-0.4, SA=0.2, ER=-0.1) for c in comps}
        [proposal] = analyze(comps, contributions, VERSION_ID)

        assert proposal.dimension == "FF"
        assert proposal.miss_kind == MissKind.FALSE_NEGATIVE
        assert proposal.change_summary == "Suggested: Reduce penalty weighting for FF by 5%"
        assert "too pessimistic" in proposal.rationale
        assert proposal.logic_version_id == VERSION_ID
        assert proposal.actor == 0
        assert proposal.status == ChangeLogStatus.PROPOSED

    def test_five_false_positives_blame_most_positive(self):
        comps = [_miss(p, DecisionStatus.VALIDATED, False) for p in range(1, 6)]
        contributions = {c.project_id: _contribs(MP=0.5, SA=0.1, DS=-0.2) for c in comps}
        [proposal] = analyze(comps, contributions, VERSION_ID)
        assert proposal.dimension == "MP"
        assert proposal.miss_kind == MissKind.FALSE_POSITIVE
        assert proposal.change_summary.startswith("Suggested: Increase penalty stringency")

    def test_split_blame_is_not_dominant(self):
        comps = _false_negatives(10)
        contributions = {
            c.project_id: _contribs(FF=-0.4) if c.project_id <= 5 else _contribs(DS=-0.4)
            for c in comps
        }
        # 5 of 10 is not more than half
        assert analyze(comps, contributions, VERSION_ID) == []

    def test_projects_without_contributions_skipped(self):
        comps = _false_negatives(6)
        contributions = {c.project_id: _contribs(FF=-0.4) for c in comps[:4]}
        assert analyze(comps, contributions, VERSION_ID) == []

    def test_conditional_misses_not_counted(self):
        comps = [_miss(p, DecisionStatus.CONDITIONAL, True) for p in range(1, 8)]
        contributions = {c.project_id: _contribs(FF=-0.4) for c in comps}
        assert analyze(comps, contributions, VERSION_ID) == []

    def test_correct_predictions_ignored(self):
        comps = _false_negatives(5)
        hit = OutcomeComparison(
            project_id=99,
            compared_at=datetime(2026, 3, 1),
            score_prediction_correct=True,
        )
        contributions = {c.project_id: _contribs(SA=-0.3) for c in comps}
        contributions[99] = _contribs(FF=-0.9)
        [proposal] = analyze(comps + [hit], contributions, VERSION_ID)
        assert proposal.dimension == "SA"
        assert proposal.category_total == 5

    def test_custom_thresholds(self):
        analyzer = WeightSensitivityAnalyzer(min_misses=2, min_occurrences=2)
        comps = _false_negatives(2)
        contributions = {c.project_id: _contribs(ER=-0.3) for c in comps}
        assert len(analyzer.analyze(comps, contributions, VERSION_ID)) == 1
