"""Project evaluation: records, history and the orchestrated pipeline.

Components:
- EvaluationRecord / Project / HistoryEntry: Data models
- EvaluationOutcome: Result of one orchestrated evaluation
- EvaluationConfig / EvaluatorConfig: Pydantic settings

The AI client, effects and orchestrator live in ``devscore.evaluation.evaluator``,
``devscore.evaluation.effects`` and ``devscore.evaluation.orchestrator``.
"""

from devscore.evaluation.config import EvaluationConfig, EvaluatorConfig
from devscore.evaluation.schemas import (
    EvaluationOutcome,
    EvaluationRecord,
    HistoryEntry,
    Project,
    SubScores,
)

__all__ = [
    "EvaluationConfig",
    "EvaluationOutcome",
    "EvaluationRecord",
    "EvaluatorConfig",
    "HistoryEntry",
    "Project",
    "SubScores",
]
