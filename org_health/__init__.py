"""
Organization Health Scoring Engine.

============================================================
COMPOSITE TENANT HEALTH SCORES
============================================================

Scores every tenant organization on a 0-100 scale from
independently collected signal categories, classifies risk,
tracks trend over time and exposes results for triage.

CORE PRINCIPLES:
- Missing data is absent, never zero
- Weights are renormalized over collected categories only
- Invalid configuration fails fast, never silently corrected
- One organization's failure never aborts a run

============================================================
RISK LEVELS
============================================================

- HEALTHY  (score >= 70)
- AT_RISK  (50 <= score < 70)
- CRITICAL (score < 50)

============================================================
USAGE
============================================================

```python
from org_health import (
    ScoringConfig,
    MetricSourceAdapter,
    StaticMetricSource,
    InMemorySnapshotStore,
    StaticOrganizationDirectory,
    RecalculationOrchestrator,
    HealthQueryService,
    Organization,
)

config = ScoringConfig.default()
adapter = MetricSourceAdapter(config, [StaticMetricSource("adoption", {"org-1": 82})])
store = InMemorySnapshotStore()
directory = StaticOrganizationDirectory([Organization("org-1", "Salon One")])

orchestrator = RecalculationOrchestrator(config, adapter, store, directory)
status = await orchestrator.run("all")

view = await HealthQueryService(store, config).get_latest("org-1")
print(view.composite_score, view.risk_level, view.trend.direction)
```

============================================================
"""

from .types import (
    Category,
    CategoryMetric,
    CompositeResult,
    HealthSnapshot,
    Organization,
    OrganizationHealthView,
    RiskLevel,
    TrendDirection,
    TrendResult,
)
from .config import (
    CategoryConfig,
    NormalizationCurve,
    RiskThresholds,
    ScoringConfig,
)
from .exceptions import (
    CategoryCollectionError,
    InvalidConfigurationError,
    OrgHealthError,
    PersistenceError,
    RunNotFoundError,
    TotalCollectionFailure,
    UnknownCategoryError,
)
from .sources import (
    CallableMetricSource,
    CollectionResult,
    HttpMetricSource,
    MetricSource,
    MetricSourceAdapter,
    StaticMetricSource,
)
from .normalizer import CategoryNormalizer
from .calculator import CompositeScoreCalculator
from .classifier import RiskClassifier
from .recommendations import RecommendationBuilder
from .store import InMemorySnapshotStore, SnapshotStore
from .trend import TrendTracker
from .orchestrator import (
    ALL_ORGANIZATIONS,
    OrganizationDirectory,
    OrganizationFailure,
    RecalculationOrchestrator,
    RunState,
    RunStatus,
    SnapshotWrittenEvent,
    StaticOrganizationDirectory,
)
from .query import DistributionStats, HealthFilter, HealthQueryService
from .clock import MockClock, SystemClock


__all__ = [
    # Types
    "Category",
    "CategoryMetric",
    "CompositeResult",
    "HealthSnapshot",
    "Organization",
    "OrganizationHealthView",
    "RiskLevel",
    "TrendDirection",
    "TrendResult",
    # Config
    "CategoryConfig",
    "NormalizationCurve",
    "RiskThresholds",
    "ScoringConfig",
    # Exceptions
    "CategoryCollectionError",
    "InvalidConfigurationError",
    "OrgHealthError",
    "PersistenceError",
    "RunNotFoundError",
    "TotalCollectionFailure",
    "UnknownCategoryError",
    # Sources
    "CallableMetricSource",
    "CollectionResult",
    "HttpMetricSource",
    "MetricSource",
    "MetricSourceAdapter",
    "StaticMetricSource",
    # Scoring
    "CategoryNormalizer",
    "CompositeScoreCalculator",
    "RiskClassifier",
    "RecommendationBuilder",
    # Storage / trends
    "InMemorySnapshotStore",
    "SnapshotStore",
    "TrendTracker",
    # Orchestration
    "ALL_ORGANIZATIONS",
    "OrganizationDirectory",
    "OrganizationFailure",
    "RecalculationOrchestrator",
    "RunState",
    "RunStatus",
    "SnapshotWrittenEvent",
    "StaticOrganizationDirectory",
    # Queries
    "DistributionStats",
    "HealthFilter",
    "HealthQueryService",
    # Clock
    "MockClock",
    "SystemClock",
]
