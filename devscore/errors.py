"""Exception hierarchy shared across the evaluation pipeline.

Policy decisions (quota, grace periods) are reported as values, not
exceptions. These errors cover the conditions a caller must translate into a
request-level failure: missing entities, conflicting evaluations, quota
rejections raised by the orchestrator, and persistence faults.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from devscore.usage.schemas import UsageDecision


class DevscoreError(Exception):
    """Base class for all devscore errors."""


class ProjectNotFoundError(DevscoreError):
    """Raised when a project id does not resolve to a stored project."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class AccountNotFoundError(DevscoreError):
    """Raised when an account id does not resolve to a stored account."""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class EvaluationInProgressError(DevscoreError):
    """Raised when a project already has an evaluation in flight."""

    def __init__(self, project_id: str) -> None:
        super().__init__(
            f"Evaluation already in progress for project {project_id}"
        )
        self.project_id = project_id


class UsageLimitError(DevscoreError):
    """Raised by the orchestrator when the usage policy rejects a request."""

    def __init__(self, decision: "UsageDecision") -> None:
        super().__init__(
            f"Evaluation limit reached: {decision.evaluations_used}/"
            f"{decision.evaluations_limit} on the {decision.plan_tier} plan"
        )
        self.decision = decision


class PersistenceError(DevscoreError):
    """Raised when a write could not be applied. Stored state is unchanged."""
