"""
Organization Health - Composite Score Calculator.

============================================================
WEIGHTED SCORING WITH RENORMALIZATION
============================================================

Combines the category sub-scores that were collected into a
single 0-100 composite score.

    present   = categories with a normalized score
    w'_i      = w_i / sum(w_j for j in present)
    composite = round(sum(score_i * w'_i)), clamped to 0-100

Missing categories are neither treated as 0 (which would crater
the score) nor as 100 (which would hide risk): their weight is
redistributed over the categories that were collected.

Decimal arithmetic keeps the result a deterministic function of
the inputs.

============================================================
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Sequence
import logging

from .exceptions import TotalCollectionFailure
from .types import CategoryMetric, CompositeResult


logger = logging.getLogger(__name__)


class CompositeScoreCalculator:
    """Computes the composite score from category metrics."""

    def compute(self, categories: Sequence[CategoryMetric]) -> CompositeResult:
        """
        Compute the composite score.

        Args:
            categories: Every configured category, present or absent

        Returns:
            CompositeResult with score, partial flag and effective weights

        Raises:
            TotalCollectionFailure: If no category is present
        """
        present = [c for c in categories if c.normalized_score is not None]
        if not present:
            raise TotalCollectionFailure(failed_categories=[c.category for c in categories])

        weights = self._renormalize(present)

        total = Decimal(0)
        for metric in present:
            total += Decimal(metric.normalized_score) * weights[metric.category]

        score = int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        score = max(0, min(100, score))

        return CompositeResult(
            score=score,
            is_partial=len(present) < len(categories),
            effective_weights={k: float(v) for k, v in weights.items()},
        )

    @staticmethod
    def _renormalize(present: Sequence[CategoryMetric]) -> Dict[str, Decimal]:
        """Redistribute weights over the present categories."""
        raw = {m.category: Decimal(repr(float(m.weight))) for m in present}
        weight_sum = sum(raw.values(), Decimal(0))

        if weight_sum == 0:
            # Only zero-weight categories survived; average them equally
            logger.debug("All present categories have zero weight, using equal weights")
            equal = Decimal(1) / Decimal(len(raw))
            return {k: equal for k in raw}

        return {k: w / weight_sum for k, w in raw.items()}
