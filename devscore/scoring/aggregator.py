"""Deterministic final-score aggregation.

The server owns the final score. The AI only supplies sub-scores, which are
combined here with a fixed weighted formula:

    final = clamp(round(sum(weight_i * score_i)), score_min, score_max)

Properties:
  - Pure: no I/O, no clock, no randomness.
  - Fail-closed: any missing, non-numeric, non-finite or out-of-range
    required sub-score yields 0, which callers treat as a failed evaluation.
  - Order-stable: products are summed in the canonical dimension order with
    ``math.fsum`` so the result does not depend on mapping iteration order.
"""

import logging
import math
import numbers
from collections.abc import Mapping
from typing import Any

from devscore.scoring.config import ScoringConfig

logger = logging.getLogger(__name__)


class ScoreAggregator:
    """Combines AI sub-scores into the authoritative final score.

    Args:
        config: Scale, weights and rounding. Defaults to ScoringConfig().
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self._config = config or ScoringConfig()

    @property
    def config(self) -> ScoringConfig:
        return self._config

    @property
    def score_min(self) -> int:
        return self._config.score_min

    @property
    def score_max(self) -> int:
        return self._config.score_max

    def is_valid_score(self, value: Any) -> bool:
        """Whether a single sub-score is a finite number inside the scale."""
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            return False
        value = float(value)
        if not math.isfinite(value):
            return False
        return self._config.score_min <= value <= self._config.score_max

    def validate(self, sub_scores: Mapping[str, Any]) -> list[str]:
        """Return the required dimensions whose sub-score is unusable.

        An empty list means every required sub-score is valid.
        """
        return [
            dim
            for dim in self._config.required_dimensions
            if not self.is_valid_score(sub_scores.get(dim))
        ]

    def weighted_average(self, sub_scores: Mapping[str, Any]) -> float:
        """Raw weighted sum before rounding. Assumes validated input."""
        weights = self._config.weights
        return math.fsum(
            weights[dim] * float(sub_scores[dim])
            for dim in self._config.required_dimensions
        )

    def compute_final_score(self, sub_scores: Mapping[str, Any]) -> int:
        """Compute the final score from a mapping of dimension -> sub-score.

        Args:
            sub_scores: camelCase dimension names (``codeQuality``,
                ``realWorldImpact``...) to numbers. Extra keys such as
                ``complexity`` are ignored.

        Returns:
            Integer in [score_min, score_max], or 0 when any required
            sub-score is invalid.
        """
        invalid = self.validate(sub_scores)
        if invalid:
            logger.warning(
                "Invalid sub-scores %s (scale %d-%d); final score is 0",
                invalid,
                self._config.score_min,
                self._config.score_max,
            )
            return 0

        raw = self.weighted_average(sub_scores)
        final = self._clamp(self._round(raw))
        logger.info(
            "Final score %d/%d (raw weighted avg %.2f, formula %s)",
            final,
            self._config.score_max,
            raw,
            self._config.score_version,
        )
        return final

    def _round(self, value: float) -> int:
        if self._config.rounding == "half_even":
            return round(value)
        return math.floor(value + 0.5)

    def _clamp(self, value: int) -> int:
        return max(self._config.score_min, min(self._config.score_max, value))
