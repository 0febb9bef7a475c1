"""Billing-driven account state changes.

Each transition is a pure function ``UsageAccount -> UsageAccount``; the
payment provider's webhook layer translates its payloads into a
``BillingEvent`` and ``UsagePolicy.apply_billing_event`` applies the matching
transition atomically. Only the entitlement fields are touched here.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Literal

from devscore.usage.schemas import (
    UNLIMITED,
    VALID_BILLING_STATUSES,
    UsageAccount,
    as_utc,
    first_of_month,
)

BillingEventType = Literal[
    "checkout_completed",
    "subscription_updated",
    "subscription_deleted",
    "payment_succeeded",
    "payment_failed",
]

VALID_EVENT_TYPES: frozenset[str] = frozenset({
    "checkout_completed",
    "subscription_updated",
    "subscription_deleted",
    "payment_succeeded",
    "payment_failed",
})

PAID_TIERS: frozenset[str] = frozenset({"pro", "team"})


@dataclass(frozen=True)
class BillingEvent:
    """A provider-agnostic billing notification for one account.

    Attributes:
        event_type: Which transition to apply.
        account_id: Account the event belongs to.
        status: New subscription status (``subscription_updated`` only).
        plan_tier: Purchased tier (``checkout_completed`` only).
        occurred_at: When the provider reported the event.
    """

    event_type: BillingEventType
    account_id: str
    status: str | None = None
    plan_tier: str = "pro"
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if self.event_type not in VALID_EVENT_TYPES:
            raise ValueError(
                f"Invalid event_type {self.event_type!r}. "
                f"Must be one of: {sorted(VALID_EVENT_TYPES)}"
            )
        if self.event_type == "subscription_updated":
            if self.status not in VALID_BILLING_STATUSES:
                raise ValueError(
                    f"subscription_updated needs a billing status, got {self.status!r}"
                )
        if self.event_type == "checkout_completed" and self.plan_tier not in PAID_TIERS:
            raise ValueError(f"Cannot check out plan {self.plan_tier!r}")


def activate_subscription(
    account: UsageAccount,
    *,
    plan_tier: str = "pro",
) -> UsageAccount:
    """Upgrade to a paid tier with unlimited evaluations."""
    return replace(
        account,
        plan_tier=plan_tier,
        billing_status="active",
        evaluations_limit=UNLIMITED,
        grace_period_end=None,
    )


def mark_past_due(
    account: UsageAccount,
    *,
    now: datetime,
    grace_period_days: int,
) -> UsageAccount:
    """Start the grace period after a failed payment.

    The plan is left alone; ``UsagePolicy`` demotes the account once
    ``grace_period_end`` has passed.
    """
    return replace(
        account,
        billing_status="past_due",
        grace_period_end=as_utc(now) + timedelta(days=grace_period_days),
    )


def cancel_subscription(
    account: UsageAccount,
    *,
    free_evaluations_limit: int,
) -> UsageAccount:
    """Drop back to the free tier."""
    return replace(
        account,
        plan_tier="free",
        billing_status="canceled",
        evaluations_limit=free_evaluations_limit,
        grace_period_end=None,
    )


def record_payment_succeeded(
    account: UsageAccount,
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> UsageAccount:
    """Clear any past-due state and start a fresh usage window."""
    return replace(
        account,
        billing_status="active",
        grace_period_end=None,
        evaluations_used=0,
        usage_period_start=first_of_month(now, tz),
    )


def update_subscription_status(
    account: UsageAccount,
    status: str,
    *,
    now: datetime,
    grace_period_days: int,
) -> UsageAccount:
    if status == "past_due":
        return mark_past_due(account, now=now, grace_period_days=grace_period_days)
    if status == "active":
        return replace(account, billing_status="active", grace_period_end=None)
    return replace(account, billing_status=status)
