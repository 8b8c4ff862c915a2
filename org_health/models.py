"""
Organization Health - Persistence Models.

============================================================
PURPOSE
============================================================
ORM model for persisted health snapshots.

Enables:
- Historical tracking of composite scores
- Trend lookback
- Audit of per-category inputs

============================================================
MODELS
============================================================
1. HealthSnapshotRecord: one row per (organization, day)

============================================================
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .types import CategoryMetric, HealthSnapshot, RiskLevel


class HealthSnapshotRecord(Base):
    """
    Persisted health snapshot.

    ============================================================
    WHAT IT STORES
    ============================================================
    - Composite score (0-100) and risk level
    - Per-category breakdown (raw value, sub-score, weight)
    - Recommendations generated at computation time

    Unique per (organization_id, score_date): a same-day rerun
    updates the row in place.

    ============================================================
    """

    __tablename__ = "organization_health_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    organization_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Tenant organization id",
    )

    organization_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    score_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="UTC calendar day of the computation (idempotency key)",
    )

    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    composite_score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Composite score (0-100)",
    )

    risk_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="healthy, at_risk, critical",
    )

    is_partial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    score_breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        comment="Ordered list of category metrics",
    )

    recommendations: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "score_date", name="uq_org_health_org_date"),
        Index("ix_org_health_org_computed", "organization_id", "computed_at"),
        Index("ix_org_health_risk_level", "risk_level"),
    )

    def apply(self, snapshot: HealthSnapshot) -> None:
        """Copy snapshot fields onto this record."""
        self.organization_id = snapshot.organization_id
        self.organization_name = snapshot.organization_name
        self.score_date = snapshot.snapshot_date
        self.computed_at = to_utc(snapshot.computed_at)
        self.composite_score = snapshot.composite_score
        self.risk_level = snapshot.risk_level.value
        self.is_partial = snapshot.is_partial
        self.score_breakdown = [m.to_dict() for m in snapshot.categories]
        self.recommendations = list(snapshot.recommendations)

    @classmethod
    def from_snapshot(cls, snapshot: HealthSnapshot) -> "HealthSnapshotRecord":
        record = cls()
        record.apply(snapshot)
        return record

    def to_snapshot(self) -> HealthSnapshot:
        return HealthSnapshot(
            organization_id=self.organization_id,
            organization_name=self.organization_name,
            computed_at=to_utc(self.computed_at),
            composite_score=self.composite_score,
            risk_level=RiskLevel(self.risk_level),
            categories=tuple(CategoryMetric.from_dict(m) for m in self.score_breakdown),
            is_partial=self.is_partial,
            recommendations=tuple(self.recommendations or ()),
        )

    def __repr__(self) -> str:
        return (
            f"HealthSnapshotRecord("
            f"org={self.organization_id}, "
            f"date={self.score_date}, "
            f"score={self.composite_score}, "
            f"level={self.risk_level})"
        )


def to_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime (SQLite drops tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
