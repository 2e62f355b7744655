"""Developer score and worth computation."""

from klyro_pipeline.scoring.config import (
    DEFAULT_NOTABLE_REPOSITORIES,
    DEFAULT_THRESHOLDS,
    DEFAULT_WEIGHTS,
    DEFAULT_WORTH_MULTIPLIERS,
    PlatformConfig,
)
from klyro_pipeline.scoring.engine import (
    MetricScore,
    ScoreResult,
    ScoringInput,
    WorthResult,
    compute_score,
    compute_worth,
    metric_score,
)

__all__ = [
    "DEFAULT_NOTABLE_REPOSITORIES",
    "DEFAULT_THRESHOLDS",
    "DEFAULT_WEIGHTS",
    "DEFAULT_WORTH_MULTIPLIERS",
    "MetricScore",
    "PlatformConfig",
    "ScoreResult",
    "ScoringInput",
    "WorthResult",
    "compute_score",
    "compute_worth",
    "metric_score",
]
