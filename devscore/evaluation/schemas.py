"""Data models for project evaluations.

``EvaluationRecord`` and its parts are Pydantic models: they are parsed from
untrusted AI output and round-trip through JSONB. ``Project`` and
``HistoryEntry`` are plain dataclasses mapping to the ``projects`` table.

Sub-scores are deliberately unconstrained at parse time. Range checks belong
to ``ScoreAggregator``, which turns an out-of-range record into a visible
failure (final score 0) rather than a parse error.
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ProjectStatus = Literal["created", "evaluating", "evaluated", "failed"]
OutcomeStatus = Literal["evaluated", "failed"]

VALID_PROJECT_STATUSES: frozenset[str] = frozenset({
    "created",
    "evaluating",
    "evaluated",
    "failed",
})

# Statuses from which a new evaluation may start
CLAIMABLE_STATUSES: frozenset[str] = frozenset({"created", "evaluated", "failed"})

DEFAULT_HISTORY_LIMIT = 10

FALLBACK_IMPROVEMENT = "AI evaluation temporarily unavailable. Please resubmit later."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubScores(BaseModel):
    """AI-produced dimension ratings.

    Field names are snake_case; the aliases are the camelCase dimension
    names used by the AI payload and by ``ScoringConfig.weights``.
    Non-finite values are stored as None (JSONB cannot hold NaN) and are
    rejected by the aggregator exactly like a missing score.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    architecture: float | None = None
    scalability: float | None = None
    code_quality: float | None = Field(default=None, alias="codeQuality")
    innovation: float | None = None
    real_world_impact: float | None = Field(default=None, alias="realWorldImpact")
    complexity: float | None = None

    @field_validator("*", mode="after")
    @classmethod
    def _finite_or_none(cls, value: float | None) -> float | None:
        if value is not None and not math.isfinite(value):
            return None
        return value

    def as_mapping(self) -> dict[str, float | None]:
        """Dimension name -> score, keyed the way the aggregator expects."""
        return self.model_dump(by_alias=True)

    @classmethod
    def zeros(cls) -> "SubScores":
        return cls(
            architecture=0,
            scalability=0,
            code_quality=0,
            innovation=0,
            real_world_impact=0,
            complexity=0,
        )


class CompanyFit(BaseModel):
    """Descriptive fit ratings for three hiring targets (same scale as sub-scores)."""

    model_config = ConfigDict(frozen=True)

    google: float = 0
    startup: float = 0
    mnc: float = 0


class TokenUsage(BaseModel):
    """Token counts reported by the AI provider for one call."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)


class Provenance(BaseModel):
    """Where an evaluation came from and whether it is usable."""

    model_config = ConfigDict(frozen=True)

    model_version: str | None = None
    prompt_version: str | None = None
    score_version: str | None = None
    evaluated_at: datetime = Field(default_factory=_utcnow)
    is_fallback: bool = False
    fallback_reason: str | None = Field(
        default=None,
        description="timeout, error, invalid_response, circuit_open or simulated",
    )
    analyzed_real_code: bool = False


class EvaluationRecord(BaseModel):
    """One evaluation attempt: sub-scores, narrative feedback and provenance."""

    model_config = ConfigDict(frozen=True)

    sub_scores: SubScores = Field(default_factory=SubScores)
    company_fit: CompanyFit = Field(default_factory=CompanyFit)
    confidence: int | None = Field(
        default=None,
        description="AI self-confidence 0-100; advisory, never affects the score",
    )
    tags: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    resume_bullets: list[str] = Field(default_factory=list)
    learning_path: list[str] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    provenance: Provenance = Field(default_factory=Provenance)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number):
            return None
        return int(max(0, min(100, round(number))))

    @property
    def is_fallback(self) -> bool:
        return self.provenance.is_fallback

    @classmethod
    def fallback(
        cls,
        reason: str,
        *,
        model_version: str | None = None,
        prompt_version: str | None = None,
        score_version: str | None = None,
        evaluated_at: datetime | None = None,
    ) -> "EvaluationRecord":
        """Build the all-zero record substituted for a failed AI call."""
        return cls(
            sub_scores=SubScores.zeros(),
            company_fit=CompanyFit(),
            improvements=[FALLBACK_IMPROVEMENT],
            token_usage=TokenUsage(),
            provenance=Provenance(
                model_version=model_version,
                prompt_version=prompt_version,
                score_version=score_version,
                evaluated_at=evaluated_at or _utcnow(),
                is_fallback=True,
                fallback_reason=reason,
            ),
        )

    def to_document(self) -> dict[str, Any]:
        """JSON-serializable form for JSONB storage."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "EvaluationRecord":
        return cls.model_validate(data)


@dataclass(frozen=True)
class HistoryEntry:
    """An archived evaluation. Never modified after creation.

    Attributes:
        version: The project's evaluation_version when this was current.
        final_score: Final score the archived evaluation produced.
        evaluation: Snapshot of the archived record.
        archived_at: When it was replaced.
    """

    version: int
    final_score: int
    evaluation: EvaluationRecord
    archived_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "final_score": self.final_score,
            "evaluation": self.evaluation.to_document(),
            "archived_at": self.archived_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        archived_at = data["archived_at"]
        if isinstance(archived_at, str):
            archived_at = datetime.fromisoformat(archived_at)
        return cls(
            version=int(data["version"]),
            final_score=int(data["final_score"]),
            evaluation=EvaluationRecord.from_document(data["evaluation"]),
            archived_at=archived_at,
        )


@dataclass
class Project:
    """A submitted project and its evaluation state.

    Attributes:
        owner_id: Usage account that owns the project.
        title: Project title shown to the evaluator.
        description: Free-text description.
        repo_url: Repository link.
        project_id: Identifier (project_{uuid_hex[:12]}).
        tech_stack: Declared technologies.
        status: created, evaluating, evaluated or failed.
        final_score: Authoritative score, None before the first evaluation.
        evaluation: Current evaluation record, if any.
        evaluation_version: Starts at 1, +1 per re-evaluation that archives.
        evaluation_history: Archived evaluations, most recent first.
    """

    owner_id: str
    title: str
    description: str
    repo_url: str
    project_id: str = field(
        default_factory=lambda: f"project_{uuid.uuid4().hex[:12]}"
    )
    tech_stack: list[str] = field(default_factory=list)
    status: str = "created"
    final_score: int | None = None
    evaluation: EvaluationRecord | None = None
    evaluation_version: int = 1
    evaluation_history: list[HistoryEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.status not in VALID_PROJECT_STATUSES:
            raise ValueError(
                f"Invalid status {self.status!r}. "
                f"Must be one of: {sorted(VALID_PROJECT_STATUSES)}"
            )
        if self.evaluation_version < 1:
            raise ValueError(
                f"Invalid evaluation_version {self.evaluation_version}. Must be >= 1."
            )

    @property
    def is_evaluating(self) -> bool:
        return self.status == "evaluating"

    @property
    def can_start_evaluation(self) -> bool:
        return self.status in CLAIMABLE_STATUSES


@dataclass(frozen=True)
class EvaluationOutcome:
    """Result of one orchestrated evaluation.

    ``status == "failed"`` means the project was saved but the evaluation did
    not produce a usable score; callers report it as processed-but-degraded.
    """

    evaluation: EvaluationRecord
    final_score: int
    status: OutcomeStatus
    project: Project
    previous_score: int | None = None

    @property
    def score_delta(self) -> int:
        return self.final_score - (self.previous_score or 0)

    @property
    def is_fallback(self) -> bool:
        return self.evaluation.is_fallback


def settled_status(project: Project) -> str:
    """The non-transient status a project returns to if a claim is abandoned.

    For a project stuck in ``evaluating`` the status is derived from what is
    stored: no evaluation means ``created``, otherwise the stored score decides.
    """
    if project.status != "evaluating":
        return project.status
    if project.evaluation is None:
        return "created"
    return "evaluated" if (project.final_score or 0) > 0 else "failed"


def archive_evaluation(
    project: Project,
    *,
    now: datetime,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> Project:
    """Move the current evaluation into history.

    Returns a new Project. When there is no current evaluation the project is
    returned unchanged (no history entry, no version bump). Otherwise the
    snapshot is prepended, history is truncated to ``limit`` (oldest dropped)
    and ``evaluation_version`` increments.
    """
    if project.evaluation is None:
        return project

    entry = HistoryEntry(
        version=project.evaluation_version,
        final_score=project.final_score or 0,
        evaluation=project.evaluation,
        archived_at=now,
    )
    history = [entry, *project.evaluation_history][:limit]
    return replace(
        project,
        evaluation_history=history,
        evaluation_version=project.evaluation_version + 1,
    )


def apply_evaluation(
    project: Project,
    record: EvaluationRecord,
    final_score: int,
    status: OutcomeStatus,
    *,
    now: datetime,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
) -> Project:
    """Archive the current evaluation and install ``record`` in its place."""
    archived = archive_evaluation(project, now=now, limit=history_limit)
    return replace(
        archived,
        evaluation=record,
        final_score=final_score,
        status=status,
        updated_at=now,
    )
