"""
Organization Health - Category Normalizer.

============================================================
RAW METRIC -> 0-100 SUB-SCORE
============================================================

Converts a raw category metric into a 0-100 integer using the
curve configured for that category:
- linear    : min/max clamps, optionally inverted
- step      : threshold table
- piecewise : interpolation between anchors

Curves are configuration data, so new categories need no code
changes. Out-of-range values clamp; they never raise.

============================================================
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence, Tuple
import logging

from .config import (
    CURVE_LINEAR,
    CURVE_PIECEWISE,
    CURVE_STEP,
    NormalizationCurve,
    ScoringConfig,
)


logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(repr(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp_score(value: float) -> float:
    """Clamp a score to the 0-100 range."""
    return max(0.0, min(100.0, value))


def interpolate_piecewise(value: float, anchors: Sequence[Tuple[float, float]]) -> float:
    """Piecewise linear interpolation. Anchors are sorted by value."""
    if not anchors:
        return 0.0
    pts = sorted(anchors, key=lambda a: a[0])
    if value <= pts[0][0]:
        return pts[0][1]
    if value >= pts[-1][0]:
        return pts[-1][1]
    for (x0, y0), (x1, y1) in zip(pts, pts[1:]):
        if x0 <= value <= x1:
            t = (value - x0) / (x1 - x0)
            return y0 + t * (y1 - y0)
    return pts[-1][1]


class CategoryNormalizer:
    """
    Maps raw category values onto 0-100 sub-scores.

    Stateless apart from the configuration it is given.
    """

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self._config = config or ScoringConfig.default()

    def normalize(
        self,
        category: str,
        raw_value: float,
        config: Optional[ScoringConfig] = None,
    ) -> int:
        """
        Normalize a raw value for a category.

        Args:
            category: Configured category key
            raw_value: Raw metric value
            config: Override configuration (defaults to the instance config)

        Returns:
            Integer sub-score in [0, 100]

        Raises:
            UnknownCategoryError: If the category is not configured
        """
        cfg = config or self._config
        curve = cfg.get_category(category).curve
        return self.apply_curve(curve, raw_value)

    @staticmethod
    def apply_curve(curve: NormalizationCurve, raw_value: float) -> int:
        """Apply a curve to a raw value and return a clamped integer score."""
        value = float(raw_value)
        if math.isnan(value):
            logger.warning("NaN raw value normalized to 0")
            return 0

        if curve.kind == CURVE_LINEAR:
            fraction = (value - curve.min_value) / (curve.max_value - curve.min_value)
            score = clamp_score(fraction * 100.0)
            if curve.inverted:
                score = 100.0 - score
        elif curve.kind == CURVE_STEP:
            score = curve.floor_score
            for threshold, step_score in curve.steps:
                if value >= threshold:
                    score = step_score
                else:
                    break
        elif curve.kind == CURVE_PIECEWISE:
            score = interpolate_piecewise(value, curve.anchors)
        else:
            # Unreachable for validated configs
            score = 0.0

        return round_half_up(clamp_score(score))
