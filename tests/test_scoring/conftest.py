"""Pytest fixtures for scoring tests."""

import pytest

from devscore.scoring import ScoreAggregator, ScoringConfig


@pytest.fixture
def scoring_config() -> ScoringConfig:
    """Default 0-9 scale with the standard weights."""
    return ScoringConfig()


@pytest.fixture
def aggregator(scoring_config: ScoringConfig) -> ScoreAggregator:
    return ScoreAggregator(scoring_config)


@pytest.fixture
def valid_scores() -> dict[str, float]:
    """Sub-scores whose weighted sum is exactly 7.0."""
    return {
        "architecture": 8,
        "scalability": 6,
        "codeQuality": 8,
        "innovation": 5,
        "realWorldImpact": 7,
        "complexity": 4,
    }
