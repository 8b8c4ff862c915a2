"""
Organization Health - Recommendations.

Builds short operator-facing recommendations from the category
sub-scores of a snapshot. Recommendations are informational and
never influence the composite score.
"""

from typing import List, Optional, Sequence
import logging

from .config import ScoringConfig
from .types import CategoryMetric


logger = logging.getLogger(__name__)


class RecommendationBuilder:
    """Turns weak or missing categories into recommendation text."""

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self._config = config or ScoringConfig.default()

    def build(self, categories: Sequence[CategoryMetric]) -> List[str]:
        recommendations: List[str] = []
        missing: List[str] = []

        for metric in categories:
            category_config = self._config.categories.get(metric.category)
            label = category_config.label if category_config else metric.category

            if not metric.is_present:
                missing.append(label)
                continue

            if metric.normalized_score < self._config.recommendation_threshold and category_config:
                try:
                    text = category_config.recommendation.format(
                        label=label,
                        score=metric.normalized_score,
                        category=metric.category,
                    )
                except (KeyError, IndexError) as e:
                    logger.warning(f"Bad recommendation template for {metric.category}: {e}")
                    text = f"{label} is low ({metric.normalized_score}/100)."
                recommendations.append(text)

        if missing:
            recommendations.append(
                f"Data unavailable for: {', '.join(missing)}. Score computed from the remaining categories."
            )

        return recommendations
