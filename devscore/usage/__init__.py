"""Plan limits, monthly usage windows and billing grace periods.

Components:
- UsageAccount: Dataclass mapping to the usage_accounts table
- UsageDecision: Result of a gating check
- UsageConfig: Pydantic settings for quotas and the usage calendar
- BillingEvent: Provider-agnostic billing notification

``UsagePolicy`` lives in ``devscore.usage.policy`` (it depends on the
storage layer, which itself imports these schemas).
"""

from devscore.usage.billing import BillingEvent
from devscore.usage.config import UsageConfig
from devscore.usage.schemas import (
    UNLIMITED,
    VALID_BILLING_STATUSES,
    VALID_PLAN_TIERS,
    UsageAccount,
    UsageDecision,
)

__all__ = [
    "BillingEvent",
    "UNLIMITED",
    "UsageAccount",
    "UsageConfig",
    "UsageDecision",
    "VALID_BILLING_STATUSES",
    "VALID_PLAN_TIERS",
]
