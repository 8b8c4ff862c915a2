"""
Organization Health - Trend Tracker.

============================================================
HISTORICAL TREND DERIVATION
============================================================

Compares a score with the snapshot closest to N days prior.

- Reference: latest snapshot with computed_at <= as_of - N days
- It must also be no older than as_of - N days - tolerance
- No reference -> score_n_days_ago = None, direction = FLAT
  (insufficient history, not "no change")
- Never interpolates or extrapolates between snapshots

============================================================
"""

from datetime import datetime, timedelta
from typing import Optional
import logging

from .config import ScoringConfig
from .store import SnapshotStore
from .types import TrendDirection, TrendResult


logger = logging.getLogger(__name__)


class TrendTracker:
    """Derives TrendResults from stored snapshots."""

    def __init__(self, store: SnapshotStore, config: Optional[ScoringConfig] = None) -> None:
        self._store = store
        self._config = config or ScoringConfig.default()

    async def trend(
        self,
        organization_id: str,
        current_score: int,
        as_of: datetime,
        lookback_days: Optional[int] = None,
    ) -> TrendResult:
        """
        Compute the trend for an organization.

        Args:
            organization_id: Organization to look up
            current_score: Score being compared
            as_of: Reference time of current_score
            lookback_days: Override the configured lookback

        Returns:
            TrendResult
        """
        days = lookback_days or self._config.lookback_days
        cutoff = as_of - timedelta(days=days)
        earliest = cutoff - timedelta(days=self._config.tolerance_days)

        reference = await self._store.find_at_or_before(organization_id, cutoff)
        if reference is None or reference.computed_at < earliest:
            return TrendResult(lookback_days=days)

        delta = current_score - reference.composite_score
        return TrendResult(
            lookback_days=days,
            score_n_days_ago=reference.composite_score,
            direction=direction_for(delta),
            delta=delta,
            reference_computed_at=reference.computed_at,
        )

    async def long_term_trend(
        self,
        organization_id: str,
        current_score: int,
        as_of: datetime,
    ) -> TrendResult:
        """Trend over the configured long lookback (30 days by default)."""
        return await self.trend(
            organization_id,
            current_score,
            as_of,
            lookback_days=self._config.long_lookback_days,
        )


def direction_for(delta: int) -> TrendDirection:
    if delta > 0:
        return TrendDirection.UP
    if delta < 0:
        return TrendDirection.DOWN
    return TrendDirection.FLAT
