"""
In-process evaluation store.

Keeps projects and accounts in dictionaries guarded by per-entity
``asyncio.Lock``s. Gives the same atomicity contract as the PostgreSQL
store within one event loop. Useful for:
- Running the pipeline without a database (``devscore demo``)
- Tests, including concurrent check-and-consume scenarios
"""

import asyncio
import copy
import logging
from dataclasses import replace
from datetime import datetime, timedelta

from devscore.errors import (
    AccountNotFoundError,
    EvaluationInProgressError,
    ProjectNotFoundError,
)
from devscore.evaluation.schemas import Project, settled_status
from devscore.storage.base import (
    AccountMutation,
    EvaluationClaim,
    EvaluationStore,
    ScoreRewrite,
    T,
)
from devscore.usage.schemas import UsageAccount, UsageDecision

logger = logging.getLogger(__name__)


class InMemoryEvaluationStore(EvaluationStore):
    """Dictionary-backed ``EvaluationStore``.

    Stored objects are deep-copied on the way in and out so callers can
    never mutate shared state without going through the store. Each project
    and account gets its lock when it is created, so lookups of unknown ids
    leave no trace.
    """

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}
        self._accounts: dict[str, UsageAccount] = {}
        # project_id -> (token, claimed_at) for live claims
        self._claims: dict[str, tuple[str, datetime]] = {}
        self._project_locks: dict[str, asyncio.Lock] = {}
        self._account_locks: dict[str, asyncio.Lock] = {}

    def _project_lock(self, project_id: str) -> asyncio.Lock:
        lock = self._project_locks.get(project_id)
        if lock is None:
            raise ProjectNotFoundError(project_id)
        return lock

    def _account_lock(self, account_id: str) -> asyncio.Lock:
        lock = self._account_locks.get(account_id)
        if lock is None:
            raise AccountNotFoundError(account_id)
        return lock

    # -- Projects ---------------------------------------------------------

    async def create_project(self, project: Project) -> Project:
        if project.project_id in self._projects:
            raise ValueError(f"Project {project.project_id} already exists")
        self._projects[project.project_id] = copy.deepcopy(project)
        self._project_locks[project.project_id] = asyncio.Lock()
        return copy.deepcopy(project)

    async def get_project(self, project_id: str) -> Project | None:
        project = self._projects.get(project_id)
        return copy.deepcopy(project) if project is not None else None

    async def list_projects(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Project]:
        ordered = sorted(self._projects.values(), key=lambda p: p.created_at)
        return [copy.deepcopy(p) for p in ordered[offset:offset + limit]]

    async def claim_project(
        self,
        project_id: str,
        *,
        now: datetime,
        stale_after: timedelta | None = None,
    ) -> EvaluationClaim:
        async with self._project_lock(project_id):
            project = self._projects[project_id]

            if project.is_evaluating:
                claimed_at = self._claims.get(project_id, (None, project.updated_at))[1]
                if stale_after is None or now - claimed_at < stale_after:
                    raise EvaluationInProgressError(project_id)
                logger.warning(
                    "Reclaiming stale evaluation on project %s (claimed at %s)",
                    project_id,
                    claimed_at.isoformat(),
                )

            claim = EvaluationClaim(
                project=copy.deepcopy(project),
                previous_status=settled_status(project),
                claimed_at=now,
            )
            self._projects[project_id] = replace(
                project, status="evaluating", updated_at=now,
            )
            self._claims[project_id] = (claim.token, now)
            return claim

    async def release_project(self, claim: EvaluationClaim) -> bool:
        async with self._project_lock(claim.project_id):
            if not self._holds(claim):
                return False
            project = self._projects[claim.project_id]
            self._projects[claim.project_id] = replace(
                project, status=claim.previous_status,
            )
            del self._claims[claim.project_id]
            return True

    async def commit_evaluation(
        self,
        claim: EvaluationClaim,
        project: Project,
        consume: AccountMutation[UsageDecision] | None = None,
    ) -> UsageDecision | None:
        async with self._project_lock(claim.project_id):
            if not self._holds(claim):
                raise EvaluationInProgressError(claim.project_id)

            decision: UsageDecision | None = None
            if consume is not None:
                async with self._account_lock(project.owner_id):
                    account = self._accounts[project.owner_id]
                    decision, updated = consume(copy.deepcopy(account))
                    if not decision.allowed:
                        return decision
                    self._accounts[project.owner_id] = updated

            self._projects[claim.project_id] = copy.deepcopy(project)
            del self._claims[claim.project_id]
            return decision

    async def rewrite_scores(
        self,
        project_id: str,
        rewrite: ScoreRewrite,
    ) -> Project | None:
        async with self._project_lock(project_id):
            stored = self._projects[project_id]
            if stored.is_evaluating or project_id in self._claims:
                raise EvaluationInProgressError(project_id)

            rewritten = rewrite(copy.deepcopy(stored))
            if rewritten is None:
                return None
            updated = replace(
                stored,
                final_score=rewritten.final_score,
                evaluation=copy.deepcopy(rewritten.evaluation),
                evaluation_history=copy.deepcopy(rewritten.evaluation_history),
            )
            self._projects[project_id] = updated
            return copy.deepcopy(updated)

    def _holds(self, claim: EvaluationClaim) -> bool:
        live = self._claims.get(claim.project_id)
        return live is not None and live[0] == claim.token

    # -- Usage accounts ---------------------------------------------------

    async def create_account(self, account: UsageAccount) -> UsageAccount:
        if account.account_id in self._accounts:
            raise ValueError(f"Account {account.account_id} already exists")
        self._accounts[account.account_id] = copy.deepcopy(account)
        self._account_locks[account.account_id] = asyncio.Lock()
        return copy.deepcopy(account)

    async def get_account(self, account_id: str) -> UsageAccount | None:
        account = self._accounts.get(account_id)
        return copy.deepcopy(account) if account is not None else None

    async def modify_account(
        self,
        account_id: str,
        mutate: AccountMutation[T],
    ) -> T:
        async with self._account_lock(account_id):
            account = self._accounts[account_id]
            result, updated = mutate(copy.deepcopy(account))
            self._accounts[account_id] = updated
            return result

    async def add_token_usage(self, account_id: str, tokens: int) -> None:
        async with self._account_lock(account_id):
            account = self._accounts[account_id]
            self._accounts[account_id] = replace(
                account, ai_tokens_used=account.ai_tokens_used + tokens,
            )
