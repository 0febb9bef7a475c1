"""
Evaluation orchestration.

One ``evaluate(project_id)`` call:

1. Gates the owner through ``UsagePolicy.check`` (nothing consumed yet).
2. Claims the project (``-> evaluating``); a live claim means conflict.
3. Calls the AI evaluator, which degrades to a fallback record on failure.
4. Computes the final score with ``ScoreAggregator``.
5. Commits in one store transaction: archive the previous evaluation, install
   the new one, bump the version and, for an ``evaluated`` outcome, consume
   one usage unit. Failed and fallback outcomes consume nothing.
6. Emits post-commit effects (token accounting, completion log).

If the commit cannot be applied the claim is released, the project keeps its
previous state, and the error is raised to the caller.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from devscore.errors import (
    DevscoreError,
    EvaluationInProgressError,
    PersistenceError,
    ProjectNotFoundError,
    UsageLimitError,
)
from devscore.evaluation.config import EvaluationConfig
from devscore.evaluation.effects import (
    EffectDispatcher,
    EvaluationCompleted,
    TokenUsageRecorded,
    default_dispatcher,
)
from devscore.evaluation.evaluator import AIEvaluator
from devscore.evaluation.schemas import (
    EvaluationOutcome,
    EvaluationRecord,
    OutcomeStatus,
    apply_evaluation,
)
from devscore.observability.logging import bind_context, clear_context
from devscore.observability.metrics import get_metrics
from devscore.scoring.aggregator import ScoreAggregator
from devscore.storage.base import EvaluationClaim, EvaluationStore
from devscore.usage.policy import UsagePolicy

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EvaluationOrchestrator:
    """Coordinates gating, the AI call, scoring and the atomic commit.

    Args:
        store: Persistence backend for projects and accounts.
        evaluator: AI evaluator; never raises.
        aggregator: Final-score formula. Defaults to ScoreAggregator().
        policy: Usage policy over the same store.
        dispatcher: Post-commit effect dispatcher.
        config: History and claim settings.
        clock: Source of "now" (UTC).
    """

    def __init__(
        self,
        store: EvaluationStore,
        evaluator: AIEvaluator,
        aggregator: ScoreAggregator | None = None,
        policy: UsagePolicy | None = None,
        dispatcher: EffectDispatcher | None = None,
        config: EvaluationConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._evaluator = evaluator
        self._aggregator = aggregator or ScoreAggregator()
        self._clock = clock or _utcnow
        self._policy = policy or UsagePolicy(store, clock=self._clock)
        self._dispatcher = dispatcher or default_dispatcher(store)
        self._config = config or EvaluationConfig()

    @property
    def policy(self) -> UsagePolicy:
        return self._policy

    async def evaluate(self, project_id: str) -> EvaluationOutcome:
        """Evaluate a project and persist the outcome.

        Returns:
            The committed outcome. ``status == "failed"`` means the project was
            saved but produced no usable score.

        Raises:
            ProjectNotFoundError: Unknown project.
            AccountNotFoundError: The owner account does not exist.
            UsageLimitError: The owner has no evaluations left.
            EvaluationInProgressError: Another evaluation holds the project.
            PersistenceError: The outcome could not be saved; nothing changed.
        """
        project = await self._store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)

        bind_context(project_id=project_id, account_id=project.owner_id)
        try:
            return await self._evaluate(project_id, project.owner_id)
        finally:
            clear_context()

    async def _evaluate(self, project_id: str, owner_id: str) -> EvaluationOutcome:
        started = time.perf_counter()
        metrics = get_metrics()

        gate = await self._policy.check(owner_id)
        if not gate.allowed:
            raise UsageLimitError(gate)

        try:
            claim = await self._store.claim_project(
                project_id,
                now=self._clock(),
                stale_after=timedelta(seconds=self._config.claim_timeout_seconds),
            )
        except EvaluationInProgressError:
            metrics.record_conflict()
            logger.info("Rejected concurrent evaluation of %s", project_id)
            raise

        project = claim.project
        try:
            record = await self._evaluator.evaluate(
                project.title,
                project.description,
                project.tech_stack,
                project.repo_url,
            )
        except BaseException:
            # Cancellation of the surrounding task must not strand the claim
            await self._release(claim)
            raise

        final_score = self._aggregator.compute_final_score(record.sub_scores.as_mapping())
        status: OutcomeStatus = "evaluated" if final_score > 0 else "failed"

        now = self._clock()
        updated = apply_evaluation(
            project,
            record,
            final_score,
            status,
            now=now,
            history_limit=self._config.history_limit,
        )
        consume = self._policy.consumer(now) if status == "evaluated" else None

        try:
            decision = await self._store.commit_evaluation(claim, updated, consume)
        except EvaluationInProgressError:
            logger.warning("Lost claim on %s before commit; discarding result", project_id)
            await self._dispatcher.dispatch_all(self._token_effects(owner_id, project_id, record))
            raise
        except DevscoreError:
            await self._release(claim)
            await self._dispatcher.dispatch_all(self._token_effects(owner_id, project_id, record))
            raise
        except Exception as e:
            logger.error("Failed to persist evaluation of %s: %s", project_id, e)
            await self._release(claim)
            await self._dispatcher.dispatch_all(self._token_effects(owner_id, project_id, record))
            raise PersistenceError(
                f"Could not save evaluation for project {project_id}"
            ) from e
        except BaseException:
            await self._release(claim)
            raise

        if decision is not None:
            self._policy.record(owner_id, decision)
            if not decision.allowed:
                await self._release(claim)
                await self._dispatcher.dispatch_all(
                    self._token_effects(owner_id, project_id, record)
                )
                raise UsageLimitError(decision)

        effects: list[Any] = self._token_effects(owner_id, project_id, record)
        effects.append(EvaluationCompleted(
            account_id=owner_id,
            project_id=project_id,
            status=status,
            final_score=final_score,
            previous_score=project.final_score,
            evaluation_version=updated.evaluation_version,
            is_fallback=record.is_fallback,
            fallback_reason=record.provenance.fallback_reason,
        ))
        await self._dispatcher.dispatch_all(effects)

        metrics.record_evaluation(status, time.perf_counter() - started)
        return EvaluationOutcome(
            evaluation=record,
            final_score=final_score,
            status=status,
            project=updated,
            previous_score=project.final_score,
        )

    async def _release(self, claim: EvaluationClaim) -> None:
        try:
            released = await self._store.release_project(claim)
        except Exception as e:
            # The claim expires after claim_timeout_seconds
            logger.error("Failed to release claim on %s: %s", claim.project_id, e)
            return
        if not released:
            logger.warning("Claim on %s was already taken over", claim.project_id)

    @staticmethod
    def _token_effects(
        owner_id: str,
        project_id: str,
        record: EvaluationRecord,
    ) -> list[Any]:
        if record.token_usage.total_tokens <= 0:
            return []
        return [TokenUsageRecorded(
            account_id=owner_id,
            project_id=project_id,
            usage=record.token_usage,
        )]
