"""Usage gating configuration.

Free-tier quota, billing grace period and the calendar used for monthly
usage windows. All settings can be overridden via ``USAGE_*`` environment
variables.
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class UsageConfig(BaseSettings):
    """Configuration for plan limits and usage windows."""

    model_config = SettingsConfigDict(
        env_prefix="USAGE_",
        case_sensitive=False,
        extra="ignore",
    )

    free_evaluations_limit: int = Field(
        default=3,
        ge=0,
        description="Evaluations per calendar month on the free plan",
    )
    grace_period_days: int = Field(
        default=3,
        ge=0,
        le=30,
        description="Days a past-due paid account keeps paid entitlements",
    )
    timezone: str = Field(
        default="UTC",
        description="IANA zone whose calendar months define usage windows",
    )

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {value!r}") from e
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)
