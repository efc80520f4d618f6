"""
Test fixtures for the MIYAR learning pipeline.

Provides:
- Async DB engine / session factory (SQLite in-memory, fresh per test)
- Sample data seeding helpers for projects, predictions and outcomes
"""

import os
from datetime import datetime
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("ALERT_DELIVERY_CHANNEL", "none")

from miyar.db import models  # noqa: E402
from miyar.db.engine import create_tables  # noqa: E402

# In-memory SQLite for fast, isolated tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    """Create a test database engine with all tables."""
    eng = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    """Create a session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── Sample data ──────────────────────────────────────────────────────────


async def add_scored_project(
    session: AsyncSession,
    *,
    name: str = "Marina Residence",
    typology: str = "Residential",
    tier: str = "Premium",
    decision: str = "validated",
    composite: float = 72.0,
    risk: float = 45.0,
    cost_mid: float | None = 5000.0,
    dimension_scores: dict | None = None,
    contributions: list | None = None,
) -> models.Project:
    """Insert a project with one score matrix."""
    project = models.Project(name=name, typology=typology, tier=tier, location="Dubai")
    session.add(project)
    await session.flush()
    session.add(models.ScoreMatrix(
        project_id=project.id,
        composite_score=composite,
        decision=decision,
        risk_score=risk,
        predicted_cost_mid=cost_mid,
        dimension_scores=dimension_scores or {"SA": 70, "FF": 65, "MP": 70, "DS": 68, "ER": 72},
        variable_contributions=contributions or [],
        computed_at=datetime(2026, 1, 1),
    ))
    await session.commit()
    return project


async def add_outcome(
    session: AsyncSession,
    project_id: int,
    *,
    cost_per_sqm: float | None = 5000.0,
    on_time: bool = True,
    satisfaction: float = 4.0,
    rework: bool = False,
    captured_at: datetime | None = None,
) -> models.ProjectOutcome:
    outcome = models.ProjectOutcome(
        project_id=project_id,
        actual_cost_per_sqm=cost_per_sqm,
        delivered_on_time=on_time,
        client_satisfaction=satisfaction,
        rework_occurred=rework,
        captured_at=captured_at or datetime(2026, 3, 1),
    )
    session.add(outcome)
    await session.commit()
    return outcome


@pytest.fixture
def seed():
    """Data seeding helpers: seed.project(session, ...), seed.outcome(session, pid, ...)."""
    return SimpleNamespace(project=add_scored_project, outcome=add_outcome)
