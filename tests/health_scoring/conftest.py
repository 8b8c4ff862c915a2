"""
Shared fixtures for organization health tests.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import pytest

from org_health import (
    CategoryMetric,
    HealthSnapshot,
    InMemorySnapshotStore,
    MetricSourceAdapter,
    MockClock,
    Organization,
    RecalculationOrchestrator,
    RiskClassifier,
    ScoringConfig,
    StaticMetricSource,
    StaticOrganizationDirectory,
)


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

CATEGORY_VALUES = {
    "adoption": 80.0,
    "engagement": 60.0,
    "performance": 70.0,
    "data_quality": 90.0,
}
# 80*0.25 + 60*0.25 + 70*0.30 + 90*0.20 = 74
EXPECTED_FULL_SCORE = 74


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def config() -> ScoringConfig:
    """Default four-category configuration."""
    return ScoringConfig.default()


@pytest.fixture
def category_values() -> Dict[str, float]:
    return dict(CATEGORY_VALUES)


@pytest.fixture
def expected_full_score() -> int:
    return EXPECTED_FULL_SCORE


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> MockClock:
    return MockClock(NOW)


@pytest.fixture
def store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def organizations() -> List[Organization]:
    return [
        Organization("org-1", "Drop Dead Salon"),
        Organization("org-2", "Blonde Ambition"),
        Organization("org-3", "Shear Genius"),
    ]


@pytest.fixture
def directory(organizations) -> StaticOrganizationDirectory:
    return StaticOrganizationDirectory(organizations)


@pytest.fixture
def sources(organizations) -> Dict[str, StaticMetricSource]:
    """One static source per category, same values for every org."""
    return {
        category: StaticMetricSource(
            category,
            {org.id: value for org in organizations},
        )
        for category, value in CATEGORY_VALUES.items()
    }


@pytest.fixture
def source_factory() -> Callable[..., List[StaticMetricSource]]:
    """Static sources returning the same values for any organization."""

    def factory(delay_seconds: float = 0.0) -> List[StaticMetricSource]:
        return [
            StaticMetricSource(category, default=value, delay_seconds=delay_seconds)
            for category, value in CATEGORY_VALUES.items()
        ]

    return factory


@pytest.fixture
def adapter(config, sources) -> MetricSourceAdapter:
    return MetricSourceAdapter(config, sources.values())


@pytest.fixture
def orchestrator(config, adapter, store, directory, clock) -> RecalculationOrchestrator:
    return RecalculationOrchestrator(
        config=config,
        adapter=adapter,
        store=store,
        directory=directory,
        clock=clock,
    )


@pytest.fixture
def snapshot_factory() -> Callable[..., HealthSnapshot]:
    """Build snapshots directly, bypassing the pipeline."""
    classifier = RiskClassifier()

    def factory(
        organization_id: str,
        score: int,
        computed_at: datetime = NOW,
        name: Optional[str] = None,
        is_partial: bool = False,
    ) -> HealthSnapshot:
        return HealthSnapshot(
            organization_id=organization_id,
            computed_at=computed_at,
            composite_score=score,
            risk_level=classifier.classify(score),
            categories=(CategoryMetric("adoption", float(score), score, 1.0),),
            is_partial=is_partial,
            organization_name=name,
        )

    return factory
