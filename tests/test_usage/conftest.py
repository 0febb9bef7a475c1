"""Pytest fixtures for usage gating tests."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from devscore.usage.config import UsageConfig
from devscore.usage.policy import UsagePolicy
from devscore.usage.schemas import UsageAccount


@pytest.fixture
def usage_config() -> UsageConfig:
    return UsageConfig(free_evaluations_limit=3, grace_period_days=3, timezone="UTC")


@pytest.fixture
def policy(store, usage_config, now) -> UsagePolicy:
    return UsagePolicy(store, usage_config, clock=lambda: now)


@pytest.fixture
def pro_account(free_account: UsageAccount) -> UsageAccount:
    """Paying pro account in good standing."""
    return replace(
        free_account,
        account_id="acct_pro",
        plan_tier="pro",
        billing_status="active",
        evaluations_limit=-1,
    )


@pytest.fixture
def team_account(free_account: UsageAccount) -> UsageAccount:
    return replace(
        free_account,
        account_id="acct_team",
        plan_tier="team",
        billing_status="active",
        evaluations_used=57,
        evaluations_limit=-1,
    )


def at(year: int, month: int, day: int, hour: int = 0) -> datetime:
    """UTC datetime shorthand."""
    return datetime(year, month, day, hour, tzinfo=timezone.utc)
