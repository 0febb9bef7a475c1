"""Schema definitions for usage accounts and policy decisions.

``UsageAccount`` maps 1:1 to the ``usage_accounts`` table and holds only the
slice of a user's identity relevant to gating: plan, monthly counters and
billing state.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Literal

UNLIMITED = -1

PlanTier = Literal["free", "pro", "team"]
BillingStatus = Literal["none", "active", "past_due", "canceled", "trialing"]
DecisionReason = Literal["unlimited", "ok", "quota_exhausted", "grace_period"]

VALID_PLAN_TIERS: frozenset[str] = frozenset({"free", "pro", "team"})

VALID_BILLING_STATUSES: frozenset[str] = frozenset({
    "none",
    "active",
    "past_due",
    "canceled",
    "trialing",
})

VALID_DECISION_REASONS: frozenset[str] = frozenset({
    "unlimited",
    "ok",
    "quota_exhausted",
    "grace_period",
})


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def first_of_month(now: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Midnight on the first day of ``now``'s month in ``tz``, as UTC."""
    local = as_utc(now).astimezone(tz)
    start = datetime(local.year, local.month, 1, tzinfo=tz)
    return start.astimezone(timezone.utc)


@dataclass
class UsageAccount:
    """Plan, usage counters and billing state for one account.

    Attributes:
        account_id: Owning user/account identifier.
        plan_tier: free, pro or team.
        evaluations_used: Units consumed in the current usage window.
        evaluations_limit: Units per window; -1 means unlimited.
        usage_period_start: First instant of the current usage window.
        billing_status: Subscription state from the billing provider.
        grace_period_end: While past_due, paid entitlements last until this.
        ai_tokens_used: Lifetime AI tokens consumed by this account.
    """

    account_id: str
    plan_tier: str = "free"
    evaluations_used: int = 0
    evaluations_limit: int = 3
    usage_period_start: datetime = field(
        default_factory=lambda: first_of_month(datetime.now(timezone.utc))
    )
    billing_status: str = "none"
    grace_period_end: datetime | None = None
    ai_tokens_used: int = 0
    updated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if self.plan_tier not in VALID_PLAN_TIERS:
            raise ValueError(
                f"Invalid plan_tier {self.plan_tier!r}. "
                f"Must be one of: {sorted(VALID_PLAN_TIERS)}"
            )
        if self.billing_status not in VALID_BILLING_STATUSES:
            raise ValueError(
                f"Invalid billing_status {self.billing_status!r}. "
                f"Must be one of: {sorted(VALID_BILLING_STATUSES)}"
            )
        if self.evaluations_used < 0:
            raise ValueError(
                f"Invalid evaluations_used {self.evaluations_used}. Must be >= 0."
            )
        if self.evaluations_limit < UNLIMITED:
            raise ValueError(
                f"Invalid evaluations_limit {self.evaluations_limit}. "
                f"Must be >= 0, or {UNLIMITED} for unlimited."
            )

    @property
    def is_unlimited(self) -> bool:
        """Unlimited accounts skip monthly resets and quota checks."""
        return self.evaluations_limit == UNLIMITED or self.plan_tier == "team"

    @property
    def remaining(self) -> int | None:
        """Units left in the current window, or None when unlimited."""
        if self.is_unlimited:
            return None
        return max(0, self.evaluations_limit - self.evaluations_used)


@dataclass(frozen=True)
class UsageDecision:
    """Outcome of a usage-policy check.

    Attributes:
        allowed: Whether the account may run an evaluation.
        reason: unlimited, ok, quota_exhausted or grace_period.
        evaluations_used: Counter after this decision was applied.
        evaluations_limit: Limit after this decision (may reflect a demotion).
        plan_tier: Plan after this decision.
        consumed: Whether a unit was consumed by this decision.
        demoted: Whether an expired grace period demoted the account.
        reset: Whether a new usage window started.
    """

    allowed: bool
    reason: DecisionReason
    evaluations_used: int
    evaluations_limit: int
    plan_tier: str
    consumed: bool = False
    demoted: bool = False
    reset: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
