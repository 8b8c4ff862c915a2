"""
Organization Health - Risk Classifier.

Maps a composite score to a risk level:

- score >= 70       -> HEALTHY
- 50 <= score < 70  -> AT_RISK
- score < 50        -> CRITICAL
"""

from typing import Optional

from .config import RiskThresholds
from .types import RiskLevel


class RiskClassifier:
    """Pure, total mapping from score to RiskLevel."""

    def __init__(self, thresholds: Optional[RiskThresholds] = None) -> None:
        self._thresholds = thresholds or RiskThresholds()
        self._thresholds.validate()

    @property
    def thresholds(self) -> RiskThresholds:
        return self._thresholds

    def classify(self, score: int) -> RiskLevel:
        """Determine risk level from a composite score."""
        if score >= self._thresholds.healthy:
            return RiskLevel.HEALTHY
        elif score >= self._thresholds.at_risk:
            return RiskLevel.AT_RISK
        else:
            return RiskLevel.CRITICAL
