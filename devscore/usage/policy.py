"""
Plan and usage gating.

``UsagePolicy.decide`` is a pure state machine over one ``UsageAccount``:

1. Team plans (and any account with limit -1) are allowed without touching
   counters.
2. Pro accounts that are ``past_due`` keep access until ``grace_period_end``.
   Once it has passed they are demoted to the free plan in place and the
   free-tier rules below apply within the same decision.
3. A calendar month later than ``usage_period_start``'s month (year-aware, in
   the configured timezone) starts a new window: the counter resets to 0.
4. ``evaluations_used >= evaluations_limit`` is rejected as quota_exhausted.
5. Otherwise the request is allowed and, when consuming, the counter
   increments.

The async methods run ``decide`` through ``EvaluationStore.modify_account`` so
the reset, the check and the increment form one indivisible read-modify-write
per account.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

from devscore.errors import AccountNotFoundError
from devscore.observability.metrics import get_metrics
from devscore.storage.base import AccountMutation, EvaluationStore
from devscore.usage.billing import (
    BillingEvent,
    activate_subscription,
    cancel_subscription,
    mark_past_due,
    record_payment_succeeded,
    update_subscription_status,
)
from devscore.usage.config import UsageConfig
from devscore.usage.schemas import UsageAccount, UsageDecision, as_utc, first_of_month

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsagePolicy:
    """
    Decides whether an account may run (and pay for) one evaluation.

    Usage:
        policy = UsagePolicy(store)
        decision = await policy.check_and_consume("acct_123")
        if not decision.allowed:
            ...  # decision.reason == "quota_exhausted"
    """

    def __init__(
        self,
        store: EvaluationStore,
        config: UsageConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._config = config or UsageConfig()
        self._clock = clock or _utcnow
        self._tz = self._config.tzinfo

    @property
    def config(self) -> UsageConfig:
        return self._config

    def now(self) -> datetime:
        return as_utc(self._clock())

    # -- Pure state machine -----------------------------------------------

    def decide(
        self,
        account: UsageAccount,
        now: datetime,
        *,
        consume: bool,
    ) -> tuple[UsageDecision, UsageAccount]:
        """Evaluate the gating rules against ``account`` at ``now``.

        Returns the decision and the account state to persist. The input
        account is never mutated.
        """
        now = as_utc(now)

        if account.plan_tier == "team":
            return self._allow(account, "unlimited"), account

        demoted = False
        if account.plan_tier == "pro":
            if account.billing_status != "past_due":
                return self._allow(account, "unlimited"), account
            grace_end = account.grace_period_end
            if grace_end is not None and now < as_utc(grace_end):
                return self._allow(account, "grace_period"), account
            account = cancel_subscription(
                account,
                free_evaluations_limit=self._config.free_evaluations_limit,
            )
            demoted = True

        if account.is_unlimited:
            return self._allow(account, "unlimited"), account

        reset = False
        if self._is_later_month(now, account.usage_period_start):
            account = replace(
                account,
                evaluations_used=0,
                usage_period_start=first_of_month(now, self._tz),
            )
            reset = True

        if account.evaluations_used >= account.evaluations_limit:
            decision = UsageDecision(
                allowed=False,
                reason="quota_exhausted",
                evaluations_used=account.evaluations_used,
                evaluations_limit=account.evaluations_limit,
                plan_tier=account.plan_tier,
                demoted=demoted,
                reset=reset,
            )
        else:
            if consume:
                account = replace(account, evaluations_used=account.evaluations_used + 1)
            decision = UsageDecision(
                allowed=True,
                reason="ok",
                evaluations_used=account.evaluations_used,
                evaluations_limit=account.evaluations_limit,
                plan_tier=account.plan_tier,
                consumed=consume,
                demoted=demoted,
                reset=reset,
            )

        if demoted or reset or decision.consumed:
            account = replace(account, updated_at=now)
        return decision, account

    def _is_later_month(self, now: datetime, period_start: datetime) -> bool:
        current = now.astimezone(self._tz)
        start = as_utc(period_start).astimezone(self._tz)
        return (current.year, current.month) > (start.year, start.month)

    @staticmethod
    def _allow(account: UsageAccount, reason: str) -> UsageDecision:
        return UsageDecision(
            allowed=True,
            reason=reason,
            evaluations_used=account.evaluations_used,
            evaluations_limit=account.evaluations_limit,
            plan_tier=account.plan_tier,
        )

    # -- Atomic operations ------------------------------------------------

    def consumer(self, now: datetime | None = None) -> AccountMutation[UsageDecision]:
        """Mutation that consumes one unit, for use inside a store transaction."""
        at = now or self.now()

        def mutate(account: UsageAccount) -> tuple[UsageDecision, UsageAccount]:
            return self.decide(account, at, consume=True)

        return mutate

    async def check(self, account_id: str) -> UsageDecision:
        """Gate without consuming. Persists any reset or demotion.

        Raises:
            AccountNotFoundError: Unknown account.
        """
        decision = await self._store.modify_account(
            account_id, self._mutation(consume=False),
        )
        self.record(account_id, decision)
        return decision

    async def check_and_consume(self, account_id: str) -> UsageDecision:
        """Check the quota and, if allowed, consume one unit atomically.

        Raises:
            AccountNotFoundError: Unknown account.
        """
        decision = await self._store.modify_account(
            account_id, self._mutation(consume=True),
        )
        self.record(account_id, decision)
        return decision

    async def preview(self, account_id: str) -> tuple[UsageDecision, UsageAccount]:
        """Read-only view of what ``check`` would decide right now."""
        account = await self._store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return self.decide(account, self.now(), consume=False)

    def _mutation(self, *, consume: bool) -> AccountMutation[UsageDecision]:
        now = self.now()

        def mutate(account: UsageAccount) -> tuple[UsageDecision, UsageAccount]:
            return self.decide(account, now, consume=consume)

        return mutate

    def record(self, account_id: str, decision: UsageDecision) -> None:
        """Log and count a decision that has been persisted."""
        get_metrics().record_usage_decision(decision.reason)
        if decision.demoted:
            logger.info(
                "Account %s demoted to free plan after grace period expired",
                account_id,
            )
        if decision.reset:
            logger.info("Usage window reset for account %s", account_id)
        if not decision.allowed:
            logger.info(
                "Account %s rejected: %s (%d/%d on %s)",
                account_id,
                decision.reason,
                decision.evaluations_used,
                decision.evaluations_limit,
                decision.plan_tier,
            )

    # -- Billing ----------------------------------------------------------

    async def apply_billing_event(self, event: BillingEvent) -> UsageAccount:
        """Apply a billing transition atomically and return the new account state.

        Raises:
            AccountNotFoundError: Unknown account.
        """
        def mutate(account: UsageAccount) -> tuple[UsageAccount, UsageAccount]:
            updated = replace(
                self._transition(account, event),
                updated_at=as_utc(event.occurred_at),
            )
            return updated, updated

        account = await self._store.modify_account(event.account_id, mutate)
        logger.info(
            "Applied billing event %s to account %s (plan=%s, status=%s)",
            event.event_type,
            event.account_id,
            account.plan_tier,
            account.billing_status,
        )
        return account

    def _transition(self, account: UsageAccount, event: BillingEvent) -> UsageAccount:
        now = as_utc(event.occurred_at)
        grace_days = self._config.grace_period_days

        if event.event_type == "checkout_completed":
            return activate_subscription(account, plan_tier=event.plan_tier)
        if event.event_type == "subscription_updated":
            return update_subscription_status(
                account, event.status or "none", now=now, grace_period_days=grace_days,
            )
        if event.event_type == "subscription_deleted":
            return cancel_subscription(
                account,
                free_evaluations_limit=self._config.free_evaluations_limit,
            )
        if event.event_type == "payment_succeeded":
            return record_payment_succeeded(account, now=now, tz=self._tz)
        return mark_past_due(account, now=now, grace_period_days=grace_days)
