"""
Organization Health - Query Facade.

============================================================
READ-ONLY ACCESS
============================================================

Serves the dashboard:
- get_latest(org)            : latest snapshot + trends
- list_all(filter)           : latest per org, most at-risk first
- get_distribution_stats()   : counts per risk level, mean score

Everything is derived from the latest snapshot per organization.
Queries never trigger recomputation.

============================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional
import logging

from .config import ScoringConfig
from .store import SnapshotStore
from .trend import TrendTracker
from .types import HealthSnapshot, OrganizationHealthView, RiskLevel


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthFilter:
    """Optional filters for list_all."""
    risk_level: Optional[RiskLevel] = None
    search_text: Optional[str] = None

    def matches(self, snapshot: HealthSnapshot) -> bool:
        if self.risk_level is not None and snapshot.risk_level != self.risk_level:
            return False
        if self.search_text:
            needle = self.search_text.strip().lower()
            haystack = [snapshot.organization_id.lower()]
            if snapshot.organization_name:
                haystack.append(snapshot.organization_name.lower())
            if not any(needle in h for h in haystack):
                return False
        return True


@dataclass(frozen=True)
class DistributionStats:
    """Aggregate statistics over the latest snapshot per organization."""
    counts: Dict[RiskLevel, int] = field(default_factory=dict)
    total: int = 0
    mean_score: Optional[float] = None
    partial_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": {level.value: self.counts.get(level, 0) for level in RiskLevel},
            "total": self.total,
            "mean_score": self.mean_score,
            "partial_count": self.partial_count,
        }


class HealthQueryService:
    """Read model over the snapshot store."""

    def __init__(self, store: SnapshotStore, config: Optional[ScoringConfig] = None) -> None:
        self._store = store
        self._config = config or ScoringConfig.default()
        self._trends = TrendTracker(store, self._config)

    async def get_latest(self, organization_id: str) -> Optional[OrganizationHealthView]:
        snapshot = await self._store.get_latest(organization_id)
        if snapshot is None:
            return None
        return await self._to_view(snapshot)

    async def list_all(self, health_filter: Optional[HealthFilter] = None) -> List[OrganizationHealthView]:
        """Latest view per organization, ascending by score."""
        health_filter = health_filter or HealthFilter()
        snapshots = [s for s in await self._store.list_latest() if health_filter.matches(s)]
        snapshots.sort(key=lambda s: (s.composite_score, s.organization_id))
        return [await self._to_view(s) for s in snapshots]

    async def get_distribution_stats(self) -> DistributionStats:
        snapshots = await self._store.list_latest()
        counts = {level: 0 for level in RiskLevel}
        for snapshot in snapshots:
            counts[snapshot.risk_level] += 1

        mean: Optional[float] = None
        if snapshots:
            total = sum(Decimal(s.composite_score) for s in snapshots)
            mean = float((total / len(snapshots)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

        return DistributionStats(
            counts=counts,
            total=len(snapshots),
            mean_score=mean,
            partial_count=sum(1 for s in snapshots if s.is_partial),
        )

    # External query interface names
    get_organization_health = get_latest
    list_organization_health = list_all
    get_health_distribution = get_distribution_stats

    async def _to_view(self, snapshot: HealthSnapshot) -> OrganizationHealthView:
        trend = await self._trends.trend(
            snapshot.organization_id,
            snapshot.composite_score,
            snapshot.computed_at,
        )
        long_term = await self._trends.long_term_trend(
            snapshot.organization_id,
            snapshot.composite_score,
            snapshot.computed_at,
        )
        return OrganizationHealthView(snapshot=snapshot, trend=trend, long_term_trend=long_term)
