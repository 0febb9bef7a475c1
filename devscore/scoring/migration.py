"""Rescaling stored scores after a score-scale change.

The scale has moved from 0-10 to 0-100 to 0-9. When ``ScoringConfig`` moves
again, stored projects are converted with these helpers (see the
``migrate-scores`` CLI command). Values that already fit the target scale
are treated as migrated and only clamped.
"""

import math
from dataclasses import replace
from typing import Any

from devscore.evaluation.schemas import (
    CompanyFit,
    EvaluationRecord,
    HistoryEntry,
    Project,
    SubScores,
)


def rescale_score(
    value: Any,
    *,
    source_max: float,
    target_min: int,
    target_max: int,
) -> int:
    """Convert one score from a 0..source_max scale to the target scale.

    None, NaN and non-numeric values become ``target_min``.
    """
    if value is None or isinstance(value, bool):
        return target_min
    try:
        number = float(value)
    except (TypeError, ValueError):
        return target_min
    if not math.isfinite(number):
        return target_min

    if number <= target_max:
        converted = number
    else:
        converted = number / source_max * target_max
    return max(target_min, min(target_max, math.floor(converted + 0.5)))


def needs_rescale(project: Project, target_max: int) -> bool:
    """Whether any stored score on the project exceeds ``target_max``.

    Archived history entries count too: they may predate a scale change the
    current evaluation has already been through.
    """
    if _exceeds(project.final_score, project.evaluation, target_max):
        return True
    return any(
        _exceeds(entry.final_score, entry.evaluation, target_max)
        for entry in project.evaluation_history
    )


def rescale_evaluation(
    record: EvaluationRecord,
    *,
    source_max: float,
    target_min: int,
    target_max: int,
) -> EvaluationRecord:
    """Return a copy of ``record`` with sub-scores and company fit rescaled."""

    def conv(value: Any) -> int:
        return rescale_score(
            value,
            source_max=source_max,
            target_min=target_min,
            target_max=target_max,
        )

    scores = record.sub_scores
    fit = record.company_fit
    return record.model_copy(
        update={
            "sub_scores": SubScores(
                architecture=conv(scores.architecture),
                scalability=conv(scores.scalability),
                code_quality=conv(scores.code_quality),
                innovation=conv(scores.innovation),
                real_world_impact=conv(scores.real_world_impact),
                complexity=conv(scores.complexity),
            ),
            "company_fit": CompanyFit(
                google=conv(fit.google),
                startup=conv(fit.startup),
                mnc=conv(fit.mnc),
            ),
        }
    )


def rescale_project(
    project: Project,
    *,
    source_max: float,
    target_min: int,
    target_max: int,
) -> Project:
    """Return a copy of ``project`` with every stored score rescaled.

    History entries are immutable snapshots, so migrated copies replace
    them rather than being edited in place.
    """
    kwargs = {
        "source_max": source_max,
        "target_min": target_min,
        "target_max": target_max,
    }
    final_score = project.final_score
    if final_score is not None:
        final_score = rescale_score(final_score, **kwargs)

    evaluation = project.evaluation
    if evaluation is not None:
        evaluation = rescale_evaluation(evaluation, **kwargs)

    history = [
        HistoryEntry(
            version=entry.version,
            final_score=rescale_score(entry.final_score, **kwargs),
            evaluation=rescale_evaluation(entry.evaluation, **kwargs),
            archived_at=entry.archived_at,
        )
        for entry in project.evaluation_history
    ]
    return replace(
        project,
        final_score=final_score,
        evaluation=evaluation,
        evaluation_history=history,
    )


def _all_scores(record: EvaluationRecord) -> list[float | None]:
    fit = record.company_fit
    return [*record.sub_scores.as_mapping().values(), fit.google, fit.startup, fit.mnc]


def _exceeds(
    final_score: int | None,
    record: EvaluationRecord | None,
    target_max: int,
) -> bool:
    if final_score is not None and final_score > target_max:
        return True
    if record is None:
        return False
    return any(v is not None and v > target_max for v in _all_scores(record))
