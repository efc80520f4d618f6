"""
MIYAR Outcome Learning.

Components:
- schemas: Prediction / outcome inputs, comparisons, snapshots, proposals
- comparator: Grade one prediction against its outcome
- ledger: Roll comparisons up into trend-carrying accuracy snapshots
- calibrator: Benchmark cost / risk suggestions per (typology, tier)
- weights: Scoring-weight change proposals from recurring misses
- patterns: Data-driven decision patterns, validated against outcomes
- evidence: Post-mortem evidence records and learning summaries
"""
