"""
Organization Health - Configuration.

============================================================
CONFIGURABLE HEALTH SCORING
============================================================

All scoring parameters are configuration data:
- Category set, weights and normalization curves
- Risk thresholds
- Trend lookback and tolerance windows
- Worker concurrency, timeouts and retries

Configuration can be loaded from:
- Default values (the four standard categories)
- A plain dictionary
- YAML config file
- Environment variables (.env supported)

============================================================
VALIDATION
============================================================

Invalid configuration is FATAL at load time:
- Weights must each lie in [0, 1] and sum to 1.0
- Curves must be well formed
- Thresholds must be ordered and within 0-100

Configuration is never renormalized or corrected silently.
The config object is passed explicitly to every component;
there is no global mutable configuration.

============================================================
"""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

import yaml
from dotenv import load_dotenv

from .exceptions import InvalidConfigurationError, UnknownCategoryError
from .types import Category


logger = logging.getLogger(__name__)


WEIGHT_SUM_TOLERANCE = 1e-6

CURVE_LINEAR = "linear"
CURVE_STEP = "step"
CURVE_PIECEWISE = "piecewise"
CURVE_KINDS = (CURVE_LINEAR, CURVE_STEP, CURVE_PIECEWISE)


# =============================================================
# NORMALIZATION CURVES
# =============================================================


@dataclass(frozen=True)
class NormalizationCurve:
    """
    Mapping from a raw metric value to a 0-100 sub-score.

    - linear:    min_value -> 0, max_value -> 100 (or reversed if inverted)
    - step:      score of the highest threshold <= value
    - piecewise: linear interpolation between (value, score) anchors
    """
    kind: str = CURVE_LINEAR
    min_value: float = 0.0
    max_value: float = 100.0
    inverted: bool = False
    steps: Tuple[Tuple[float, float], ...] = ()
    floor_score: float = 0.0
    anchors: Tuple[Tuple[float, float], ...] = ()

    def validate(self, category: str) -> None:
        """Raise InvalidConfigurationError if the curve is malformed."""
        field_name = f"categories.{category}.curve"
        if self.kind not in CURVE_KINDS:
            raise InvalidConfigurationError(
                f"Unknown curve kind '{self.kind}' for {category}",
                field=field_name,
                value=self.kind,
            )
        if self.kind == CURVE_LINEAR:
            if not (math.isfinite(self.min_value) and math.isfinite(self.max_value)):
                raise InvalidConfigurationError(
                    f"Linear curve bounds must be finite for {category}",
                    field=field_name,
                )
            if self.max_value <= self.min_value:
                raise InvalidConfigurationError(
                    f"Linear curve requires max_value > min_value for {category}",
                    field=field_name,
                    value=(self.min_value, self.max_value),
                )
        elif self.kind == CURVE_STEP:
            if not self.steps:
                raise InvalidConfigurationError(
                    f"Step curve requires at least one step for {category}",
                    field=field_name,
                )
            thresholds = [threshold for threshold, _ in self.steps]
            if thresholds != sorted(thresholds) or len(set(thresholds)) != len(thresholds):
                raise InvalidConfigurationError(
                    f"Step thresholds must be strictly increasing for {category}",
                    field=field_name,
                    value=thresholds,
                )
            _check_scores(category, [score for _, score in self.steps] + [self.floor_score])
        else:
            if len(self.anchors) < 2:
                raise InvalidConfigurationError(
                    f"Piecewise curve requires at least two anchors for {category}",
                    field=field_name,
                )
            values = [value for value, _ in self.anchors]
            if values != sorted(values) or len(set(values)) != len(values):
                raise InvalidConfigurationError(
                    f"Piecewise anchors must be strictly increasing for {category}",
                    field=field_name,
                    value=values,
                )
            _check_scores(category, [score for _, score in self.anchors])

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind}
        if self.kind == CURVE_LINEAR:
            data.update(min=self.min_value, max=self.max_value, inverted=self.inverted)
        elif self.kind == CURVE_STEP:
            data.update(steps=[list(s) for s in self.steps], floor_score=self.floor_score)
        else:
            data.update(anchors=[list(a) for a in self.anchors])
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NormalizationCurve":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise InvalidConfigurationError("Curve must be a mapping", field="curve", value=data)
        try:
            return cls(
                kind=str(data.get("kind", CURVE_LINEAR)),
                min_value=float(data.get("min", 0.0)),
                max_value=float(data.get("max", 100.0)),
                inverted=bool(data.get("inverted", False)),
                steps=tuple((float(t), float(s)) for t, s in data.get("steps", ())),
                floor_score=float(data.get("floor_score", 0.0)),
                anchors=tuple((float(v), float(s)) for v, s in data.get("anchors", ())),
            )
        except (TypeError, ValueError) as e:
            raise InvalidConfigurationError(f"Malformed curve definition: {e}", field="curve") from e


def _check_scores(category: str, scores: List[float]) -> None:
    for score in scores:
        if not 0 <= score <= 100:
            raise InvalidConfigurationError(
                f"Curve scores must lie in 0-100 for {category}",
                field=f"categories.{category}.curve",
                value=score,
            )


# =============================================================
# CATEGORY CONFIG
# =============================================================


@dataclass(frozen=True)
class CategoryConfig:
    """Weight, curve and presentation text for one category."""
    weight: float
    curve: NormalizationCurve = field(default_factory=NormalizationCurve)
    label: str = ""
    recommendation: str = "Review the underlying {label} metrics."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight": self.weight,
            "curve": self.curve.to_dict(),
            "label": self.label,
            "recommendation": self.recommendation,
        }


# =============================================================
# RISK THRESHOLDS
# =============================================================


@dataclass(frozen=True)
class RiskThresholds:
    """
    Thresholds for determining risk levels.

    - HEALTHY:  score >= healthy
    - AT_RISK:  at_risk <= score < healthy
    - CRITICAL: score < at_risk
    """
    healthy: int = 70
    at_risk: int = 50

    def validate(self) -> None:
        if not 0 <= self.at_risk <= 100:
            raise InvalidConfigurationError("at_risk threshold must be 0-100", field="thresholds.at_risk", value=self.at_risk)
        if not 0 <= self.healthy <= 100:
            raise InvalidConfigurationError("healthy threshold must be 0-100", field="thresholds.healthy", value=self.healthy)
        if self.at_risk >= self.healthy:
            raise InvalidConfigurationError(
                "at_risk threshold must be < healthy threshold",
                field="thresholds",
                value=(self.healthy, self.at_risk),
            )

    def to_dict(self) -> Dict[str, int]:
        return {"healthy": self.healthy, "at_risk": self.at_risk}


# =============================================================
# MAIN CONFIGURATION
# =============================================================


def _default_categories() -> Dict[str, CategoryConfig]:
    return {
        Category.ADOPTION.value: CategoryConfig(
            weight=0.25,
            label="Adoption",
            recommendation=(
                "Adoption is low ({score}/100). Consider scheduling training "
                "sessions to increase platform usage."
            ),
        ),
        Category.ENGAGEMENT.value: CategoryConfig(
            weight=0.25,
            label="Engagement",
            recommendation=(
                "Engagement needs improvement ({score}/100). Encourage team "
                "communication through announcements and chat."
            ),
        ),
        Category.PERFORMANCE.value: CategoryConfig(
            weight=0.30,
            label="Performance",
            recommendation=(
                "Performance metrics are concerning ({score}/100). Review "
                "booking trends and revenue patterns."
            ),
        ),
        Category.DATA_QUALITY.value: CategoryConfig(
            weight=0.20,
            label="Data quality",
            recommendation=(
                "Data quality issues detected ({score}/100). Check sync status "
                "and resolve any anomalies."
            ),
        ),
    }


@dataclass
class ScoringConfig:
    """
    Main configuration for organization health scoring.

    Validated on construction; see module docstring.
    """
    categories: Dict[str, CategoryConfig] = field(default_factory=_default_categories)
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)

    # Trend settings
    lookback_days: int = 7
    tolerance_days: int = 2
    long_lookback_days: int = 30

    # Recalculation settings
    max_concurrency: int = 8
    category_timeout_seconds: float = 10.0
    persistence_timeout_seconds: float = 10.0
    persistence_retries: int = 3

    # Recommendations
    recommendation_threshold: int = 60

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Validate the configuration. Raises InvalidConfigurationError."""
        if not self.categories:
            raise InvalidConfigurationError("At least one category must be configured", field="categories")

        for name, category in self.categories.items():
            if not name or not isinstance(name, str):
                raise InvalidConfigurationError("Category keys must be non-empty strings", field="categories", value=name)
            if not isinstance(category.weight, (int, float)) or not math.isfinite(category.weight):
                raise InvalidConfigurationError(
                    f"Weight for {name} must be a number", field=f"categories.{name}.weight", value=category.weight
                )
            if not 0.0 <= category.weight <= 1.0:
                raise InvalidConfigurationError(
                    f"Weight for {name} must be within [0, 1]",
                    field=f"categories.{name}.weight",
                    value=category.weight,
                )
            category.curve.validate(name)

        total = self.total_weight()
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise InvalidConfigurationError(
                f"Category weights sum to {total:.6f}, expected 1.0",
                field="categories",
                value=total,
            )

        self.thresholds.validate()

        for name in ("lookback_days", "long_lookback_days", "max_concurrency", "persistence_retries"):
            if getattr(self, name) < 1:
                raise InvalidConfigurationError(f"{name} must be >= 1", field=name, value=getattr(self, name))
        if self.tolerance_days < 0:
            raise InvalidConfigurationError("tolerance_days must be >= 0", field="tolerance_days", value=self.tolerance_days)
        for name in ("category_timeout_seconds", "persistence_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise InvalidConfigurationError(f"{name} must be > 0", field=name, value=getattr(self, name))
        if not 0 <= self.recommendation_threshold <= 100:
            raise InvalidConfigurationError(
                "recommendation_threshold must be 0-100",
                field="recommendation_threshold",
                value=self.recommendation_threshold,
            )

    def total_weight(self) -> float:
        """Get sum of all category weights."""
        return math.fsum(c.weight for c in self.categories.values())

    @property
    def category_names(self) -> List[str]:
        """Configured categories, in configuration order."""
        return list(self.categories)

    def get_category(self, category: str) -> CategoryConfig:
        try:
            return self.categories[category]
        except KeyError:
            raise UnknownCategoryError(category, self.category_names) from None

    def get_weight(self, category: str) -> float:
        return self.get_category(category).weight

    @classmethod
    def default(cls) -> "ScoringConfig":
        return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoringConfig":
        """
        Build configuration from a plain dictionary.

        Missing top-level keys fall back to defaults; a present
        `categories` mapping replaces the default set entirely.
        """
        if not isinstance(data, dict):
            raise InvalidConfigurationError("Configuration must be a mapping", value=type(data).__name__)

        kwargs: Dict[str, Any] = {}

        if "categories" in data:
            raw_categories = data["categories"]
            if not isinstance(raw_categories, dict):
                raise InvalidConfigurationError("categories must be a mapping", field="categories")
            categories: Dict[str, CategoryConfig] = {}
            defaults = _default_categories()
            for name, raw in raw_categories.items():
                raw = raw or {}
                if not isinstance(raw, dict):
                    raise InvalidConfigurationError(
                        f"Category {name} must be a mapping", field=f"categories.{name}", value=raw
                    )
                if "weight" not in raw:
                    raise InvalidConfigurationError(f"Missing weight for {name}", field=f"categories.{name}.weight")
                try:
                    weight = float(raw["weight"])
                except (TypeError, ValueError) as e:
                    raise InvalidConfigurationError(
                        f"Weight for {name} must be a number", field=f"categories.{name}.weight", value=raw["weight"]
                    ) from e
                default = defaults.get(name)
                categories[str(name)] = CategoryConfig(
                    weight=weight,
                    curve=NormalizationCurve.from_dict(raw.get("curve")),
                    label=raw.get("label") or (default.label if default else str(name).replace("_", " ").capitalize()),
                    recommendation=raw.get("recommendation")
                    or (default.recommendation if default else CategoryConfig.recommendation),
                )
            kwargs["categories"] = categories

        if "thresholds" in data:
            t = data["thresholds"] or {}
            try:
                kwargs["thresholds"] = RiskThresholds(
                    healthy=int(t.get("healthy", RiskThresholds.healthy)),
                    at_risk=int(t.get("at_risk", RiskThresholds.at_risk)),
                )
            except (TypeError, ValueError, AttributeError) as e:
                raise InvalidConfigurationError("Invalid risk thresholds", field="thresholds", value=t) from e

        for name, caster in (
            ("lookback_days", int),
            ("tolerance_days", int),
            ("long_lookback_days", int),
            ("max_concurrency", int),
            ("category_timeout_seconds", float),
            ("persistence_timeout_seconds", float),
            ("persistence_retries", int),
            ("recommendation_threshold", int),
        ):
            if name in data:
                try:
                    kwargs[name] = caster(data[name])
                except (TypeError, ValueError) as e:
                    raise InvalidConfigurationError(f"Invalid value for {name}", field=name, value=data[name]) from e

        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ScoringConfig":
        """Load configuration from a YAML file."""
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise InvalidConfigurationError(f"Failed to load YAML config from {path}: {e}", field="path") from e
        config = cls.from_dict(data)
        logger.info(f"Loaded scoring config from {path} ({len(config.categories)} categories)")
        return config

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - ORG_HEALTH_CONFIG: path to a YAML config file
        - ORG_HEALTH_MAX_CONCURRENCY
        - ORG_HEALTH_LOOKBACK_DAYS
        - ORG_HEALTH_CATEGORY_TIMEOUT
        """
        load_dotenv()

        path = os.getenv("ORG_HEALTH_CONFIG")
        data: Dict[str, Any] = {}
        if path:
            try:
                with open(path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise InvalidConfigurationError(f"Failed to load YAML config from {path}: {e}", field="path") from e
            if not isinstance(data, dict):
                raise InvalidConfigurationError(f"Config file {path} must contain a mapping", field="path")

        if os.getenv("ORG_HEALTH_MAX_CONCURRENCY"):
            data["max_concurrency"] = os.getenv("ORG_HEALTH_MAX_CONCURRENCY")
        if os.getenv("ORG_HEALTH_LOOKBACK_DAYS"):
            data["lookback_days"] = os.getenv("ORG_HEALTH_LOOKBACK_DAYS")
        if os.getenv("ORG_HEALTH_CATEGORY_TIMEOUT"):
            data["category_timeout_seconds"] = os.getenv("ORG_HEALTH_CATEGORY_TIMEOUT")

        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "categories": {name: c.to_dict() for name, c in self.categories.items()},
            "thresholds": self.thresholds.to_dict(),
            "lookback_days": self.lookback_days,
            "tolerance_days": self.tolerance_days,
            "long_lookback_days": self.long_lookback_days,
            "max_concurrency": self.max_concurrency,
            "category_timeout_seconds": self.category_timeout_seconds,
            "persistence_timeout_seconds": self.persistence_timeout_seconds,
            "persistence_retries": self.persistence_retries,
            "recommendation_threshold": self.recommendation_threshold,
        }
