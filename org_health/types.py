"""
Organization Health - Core Types.

============================================================
CORE DATA STRUCTURES
============================================================

- Category: Well-known signal categories (open to extension)
- RiskLevel: healthy / at_risk / critical
- TrendDirection: up / down / flat
- CategoryMetric: One category's contribution for one org
- HealthSnapshot: Immutable scoring result for one org
- TrendResult: Derived comparison against a prior snapshot
- OrganizationHealthView: Read model returned by queries
- Organization: Tenant as seen by the scoring engine

============================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# =============================================================
# ENUMS
# =============================================================


class Category(str, Enum):
    """
    Well-known signal categories.

    Categories are configuration driven; any key present in the
    scoring configuration is valid. These are the defaults.
    """
    ADOPTION = "adoption"
    ENGAGEMENT = "engagement"
    PERFORMANCE = "performance"
    DATA_QUALITY = "data_quality"


class RiskLevel(str, Enum):
    """
    Coarse risk classification derived from the composite score.
    """
    HEALTHY = "healthy"
    AT_RISK = "at_risk"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        """Ordering helper: higher is worse."""
        return {
            RiskLevel.HEALTHY: 0,
            RiskLevel.AT_RISK: 1,
            RiskLevel.CRITICAL: 2,
        }[self]


class TrendDirection(str, Enum):
    """Direction of the score relative to a prior snapshot."""
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


# =============================================================
# DATA CLASSES
# =============================================================


@dataclass(frozen=True)
class CategoryMetric:
    """
    One category's contribution for one organization.

    raw_value is None when collection failed. Absent is never
    the same thing as a measured zero.
    """
    category: str
    raw_value: Optional[float]
    normalized_score: Optional[int]
    weight: float
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.raw_value is None and self.normalized_score is not None:
            raise ValueError(f"{self.category}: normalized_score requires raw_value")
        if self.raw_value is not None and self.normalized_score is None:
            raise ValueError(f"{self.category}: raw_value requires normalized_score")
        if self.normalized_score is not None and not 0 <= self.normalized_score <= 100:
            raise ValueError(f"{self.category}: normalized_score out of range")

    @property
    def is_present(self) -> bool:
        return self.normalized_score is not None

    @classmethod
    def absent(cls, category: str, weight: float, error: Optional[str] = None) -> "CategoryMetric":
        """Build a metric for a category that failed collection."""
        return cls(category=category, raw_value=None, normalized_score=None, weight=weight, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "raw_value": self.raw_value,
            "normalized_score": self.normalized_score,
            "weight": self.weight,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategoryMetric":
        return cls(
            category=data["category"],
            raw_value=data.get("raw_value"),
            normalized_score=data.get("normalized_score"),
            weight=float(data["weight"]),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class HealthSnapshot:
    """
    Immutable scoring result for one organization per run.

    composite_score is a function of `categories` only. Snapshots
    are superseded by later ones, never modified.
    """
    organization_id: str
    computed_at: datetime
    composite_score: int
    risk_level: RiskLevel
    categories: Tuple[CategoryMetric, ...]
    is_partial: bool
    organization_name: Optional[str] = None
    recommendations: Tuple[str, ...] = ()

    @property
    def snapshot_date(self) -> date:
        """Idempotency key (with organization_id)."""
        return self.computed_at.date()

    def get_category(self, category: str) -> Optional[CategoryMetric]:
        for metric in self.categories:
            if metric.category == category:
                return metric
        return None

    @property
    def missing_categories(self) -> Tuple[str, ...]:
        return tuple(m.category for m in self.categories if not m.is_present)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "organization_id": self.organization_id,
            "organization_name": self.organization_name,
            "computed_at": self.computed_at.isoformat(),
            "snapshot_date": self.snapshot_date.isoformat(),
            "composite_score": self.composite_score,
            "risk_level": self.risk_level.value,
            "is_partial": self.is_partial,
            "categories": [m.to_dict() for m in self.categories],
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class TrendResult:
    """
    Comparison of a score against the snapshot closest to N days prior.

    score_n_days_ago is None when there is not enough history; the
    direction is then FLAT by convention.
    """
    lookback_days: int
    score_n_days_ago: Optional[int] = None
    direction: TrendDirection = TrendDirection.FLAT
    delta: Optional[int] = None
    reference_computed_at: Optional[datetime] = None

    @property
    def has_history(self) -> bool:
        return self.score_n_days_ago is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lookback_days": self.lookback_days,
            "score_n_days_ago": self.score_n_days_ago,
            "direction": self.direction.value,
            "delta": self.delta,
            "reference_computed_at": (
                self.reference_computed_at.isoformat() if self.reference_computed_at else None
            ),
        }


@dataclass(frozen=True)
class OrganizationHealthView:
    """Latest snapshot for an organization plus its trends."""
    snapshot: HealthSnapshot
    trend: TrendResult
    long_term_trend: Optional[TrendResult] = None

    @property
    def organization_id(self) -> str:
        return self.snapshot.organization_id

    @property
    def composite_score(self) -> int:
        return self.snapshot.composite_score

    @property
    def risk_level(self) -> RiskLevel:
        return self.snapshot.risk_level

    def to_dict(self) -> Dict[str, Any]:
        data = self.snapshot.to_dict()
        data["trend"] = self.trend.to_dict()
        data["long_term_trend"] = self.long_term_trend.to_dict() if self.long_term_trend else None
        return data


@dataclass(frozen=True)
class Organization:
    """A tenant organization."""
    id: str
    name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class CompositeResult:
    """Output of the composite score calculator."""
    score: int
    is_partial: bool
    effective_weights: Dict[str, float] = field(default_factory=dict)
