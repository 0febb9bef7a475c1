"""Configuration for deterministic final-score aggregation.

The score scale and the dimension weights are configuration, not code: the
scale has already moved between 0-10, 0-100 and 0-9. All settings can be
overridden via SCORING_* environment variables.
"""

import math
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Dimensions that may carry a weight, in the fixed order used for summation
WEIGHTED_DIMENSIONS: tuple[str, ...] = (
    "architecture",
    "scalability",
    "codeQuality",
    "innovation",
    "realWorldImpact",
)

# Reported alongside the final score but never part of it
DESCRIPTIVE_DIMENSIONS: tuple[str, ...] = ("complexity",)

DEFAULT_WEIGHTS: dict[str, float] = {
    "architecture": 0.25,
    "scalability": 0.20,
    "codeQuality": 0.25,
    "innovation": 0.15,
    "realWorldImpact": 0.15,
}

WEIGHT_SUM_TOLERANCE = 1e-9


class ScoringConfig(BaseSettings):
    """Scale, weights and rounding for the final-score formula.

    Example:
        SCORING_SCORE_MAX=9
        SCORING_WEIGHTS='{"architecture": 0.3, "scalability": 0.2, ...}'
        SCORING_ROUNDING=half_even
    """

    model_config = SettingsConfigDict(
        env_prefix="SCORING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    score_min: int = Field(
        default=0,
        description="Lowest valid sub-score and final score",
    )
    score_max: int = Field(
        default=9,
        description="Highest valid sub-score and final score",
    )
    weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_WEIGHTS),
        description="Dimension -> weight; weights must sum to 1.0",
    )
    rounding: Literal["half_up", "half_even"] = Field(
        default="half_up",
        description="half_up: floor(x + 0.5); half_even: banker's rounding",
    )
    score_version: str = Field(
        default="v2.0",
        description="Formula version stamped on every evaluation",
    )

    @model_validator(mode="after")
    def _validate_formula(self) -> "ScoringConfig":
        if self.score_min >= self.score_max:
            raise ValueError(
                f"score_min ({self.score_min}) must be below score_max ({self.score_max})"
            )
        if not self.weights:
            raise ValueError("At least one weighted dimension is required")

        unknown = sorted(set(self.weights) - set(WEIGHTED_DIMENSIONS))
        if unknown:
            raise ValueError(
                f"Unknown weighted dimensions {unknown}. "
                f"Must be drawn from: {list(WEIGHTED_DIMENSIONS)}"
            )
        negative = sorted(k for k, w in self.weights.items() if w < 0)
        if negative:
            raise ValueError(f"Weights must be non-negative: {negative}")

        total = math.fsum(self.weights.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"Weights must sum to 1.0, got {total!r}")
        return self

    @property
    def required_dimensions(self) -> tuple[str, ...]:
        """Weighted dimensions in canonical summation order."""
        return tuple(d for d in WEIGHTED_DIMENSIONS if d in self.weights)
