"""Deterministic final-score aggregation.

The AI never sets the final score. It returns sub-scores, and
``ScoreAggregator`` combines them with a configured weighted formula.

Usage:
    from devscore.scoring import ScoreAggregator

    aggregator = ScoreAggregator()
    final = aggregator.compute_final_score(record.sub_scores.as_mapping())
"""

from devscore.scoring.aggregator import ScoreAggregator
from devscore.scoring.config import (
    DEFAULT_WEIGHTS,
    DESCRIPTIVE_DIMENSIONS,
    WEIGHTED_DIMENSIONS,
    ScoringConfig,
)

__all__ = [
    "DEFAULT_WEIGHTS",
    "DESCRIPTIVE_DIMENSIONS",
    "ScoreAggregator",
    "ScoringConfig",
    "WEIGHTED_DIMENSIONS",
]
