"""
MIYAR Outcome Learning & Calibration Pipeline.

Architecture:
    miyar/
    ├── learning/        # Pure computations (comparator, ledger, calibrator, weights, patterns)
    ├── alerting/        # Alert engine (rules, dedup, delivery channels)
    ├── db/              # SQLAlchemy models, engine, queries
    ├── pipeline/        # One batch run: read → compute → insert
    └── services/        # Scheduler owner object (weekly learning, 15-min alerts)

Module Boundaries:
    - The scoring engine produces predictions; this package only grades them
    - Every output is a PROPOSAL (pending / proposed) — nothing here mutates
      live scoring weights or benchmark prices
    - Pure components never touch the database and never raise on missing data

Data Flow:
    Prediction + Outcome → Comparator → Comparison
    → Ledger / Calibrator / Weight Analyzer / Pattern Matcher
    → Alert Engine → Dedup → Insert → Delivery (best effort)

Version: 1.0.0
"""

__version__ = "1.0.0"
