"""
Abstract persistence interface for projects and usage accounts.

Projects and usage accounts are the only shared mutable state in the
pipeline. Every backend must provide these guarantees:

- ``claim_project`` is an atomic compare-and-set: at most one claim per
  project is live at a time.
- ``modify_account`` is an indivisible read-modify-write per account.
- ``commit_evaluation`` applies the project overwrite (with its archived
  history) and the optional usage consumption together, or not at all.
"""

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TypeVar

from devscore.evaluation.schemas import Project
from devscore.usage.schemas import UsageAccount, UsageDecision

T = TypeVar("T")

# Pure function applied under the account lock: returns (result, new state)
AccountMutation = Callable[[UsageAccount], tuple[T, UsageAccount]]

# Pure function applied under the project lock by rewrite_scores
ScoreRewrite = Callable[[Project], Project | None]


@dataclass(frozen=True)
class EvaluationClaim:
    """Proof of ownership of an in-flight evaluation.

    Attributes:
        project: The project as it was immediately before the claim.
        previous_status: Status to restore if the claim is released.
        claimed_at: When the claim was taken.
        token: Unique claim identifier; writes with a stale token are refused.
    """

    project: Project
    previous_status: str
    claimed_at: datetime
    token: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def project_id(self) -> str:
        return self.project.project_id


class EvaluationStore(ABC):
    """
    Persistence backend for the evaluation pipeline.

    Implementations: ``PostgresEvaluationStore`` (asyncpg) and
    ``InMemoryEvaluationStore`` (development and tests).
    """

    # -- Projects ---------------------------------------------------------

    @abstractmethod
    async def create_project(self, project: Project) -> Project:
        """Insert a new project."""

    @abstractmethod
    async def get_project(self, project_id: str) -> Project | None:
        """Fetch a project by id, or None."""

    @abstractmethod
    async def list_projects(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Project]:
        """List projects ordered by creation time (oldest first)."""

    @abstractmethod
    async def claim_project(
        self,
        project_id: str,
        *,
        now: datetime,
        stale_after: timedelta | None = None,
    ) -> EvaluationClaim:
        """Atomically move a project into ``evaluating``.

        A project already ``evaluating`` can only be claimed when its claim
        is older than ``stale_after``.

        Raises:
            ProjectNotFoundError: Unknown project.
            EvaluationInProgressError: A live claim exists.
        """

    @abstractmethod
    async def release_project(self, claim: EvaluationClaim) -> bool:
        """Return a claimed project to ``claim.previous_status``.

        Returns False (and changes nothing) if the claim is no longer held.
        """

    @abstractmethod
    async def commit_evaluation(
        self,
        claim: EvaluationClaim,
        project: Project,
        consume: AccountMutation[UsageDecision] | None = None,
    ) -> UsageDecision | None:
        """Persist an evaluated project and optionally consume usage, atomically.

        ``project`` carries the new evaluation, archived history, version and
        terminal status. When ``consume`` is given it runs against the owner
        account under the same transaction; if its decision is not allowed
        nothing at all is written and the decision is returned.

        Raises:
            EvaluationInProgressError: The claim was lost to another run.
            AccountNotFoundError: The owner account does not exist.
        """

    @abstractmethod
    async def rewrite_scores(
        self,
        project_id: str,
        rewrite: ScoreRewrite,
    ) -> Project | None:
        """Rewrite the stored scores of an idle project under its lock.

        ``rewrite`` receives the project as currently stored and returns the
        rescaled copy, or None to leave it alone. Only ``final_score``,
        ``evaluation`` and ``evaluation_history`` are written back.

        Returns:
            The rewritten project, or None if ``rewrite`` declined.

        Raises:
            ProjectNotFoundError: Unknown project.
            EvaluationInProgressError: The project is claimed by an evaluation.
        """

    # -- Usage accounts ---------------------------------------------------

    @abstractmethod
    async def create_account(self, account: UsageAccount) -> UsageAccount:
        """Insert a new usage account."""

    @abstractmethod
    async def get_account(self, account_id: str) -> UsageAccount | None:
        """Fetch an account by id, or None."""

    @abstractmethod
    async def modify_account(
        self,
        account_id: str,
        mutate: AccountMutation[T],
    ) -> T:
        """Apply ``mutate`` as one indivisible read-modify-write.

        Raises:
            AccountNotFoundError: Unknown account.
        """

    @abstractmethod
    async def add_token_usage(self, account_id: str, tokens: int) -> None:
        """Add ``tokens`` to the account's lifetime AI token counter."""

    # -- Lifecycle --------------------------------------------------------

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None
