"""Post-commit side effects of an evaluation.

The orchestrator never performs unrelated I/O on its success path. Once an
evaluation is committed it emits effect records, and ``EffectDispatcher``
hands each one to the handlers registered for its type. Handler failures are
retried, then logged; they never reach the caller and never undo the commit.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from devscore.evaluation.schemas import TokenUsage
from devscore.observability.metrics import get_metrics
from devscore.storage.base import EvaluationStore

logger = logging.getLogger(__name__)

EffectHandler = Callable[[Any], Awaitable[None]]


class EffectConfig(BaseSettings):
    """Retry settings for effect handlers."""

    model_config = SettingsConfigDict(
        env_prefix="EFFECTS_",
        case_sensitive=False,
        extra="ignore",
    )

    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per handler per effect",
    )
    retry_delays: list[float] = Field(
        default=[0.5, 2.0],
        description="Delay in seconds before each retry",
    )


@dataclass(frozen=True)
class TokenUsageRecorded:
    """The AI call for an evaluation reported token usage."""

    account_id: str
    project_id: str
    usage: TokenUsage


@dataclass(frozen=True)
class EvaluationCompleted:
    """An evaluation outcome was committed."""

    account_id: str
    project_id: str
    status: str
    final_score: int
    previous_score: int | None
    evaluation_version: int
    is_fallback: bool
    fallback_reason: str | None = None


class EffectDispatcher:
    """Routes effects to handlers by effect type.

    Usage:
        dispatcher = EffectDispatcher()
        dispatcher.register(EvaluationCompleted, send_email)
        await dispatcher.dispatch_all(effects)
    """

    def __init__(self, config: EffectConfig | None = None) -> None:
        self._config = config or EffectConfig()
        self._handlers: defaultdict[type, list[EffectHandler]] = defaultdict(list)

    def register(self, effect_type: type, handler: EffectHandler) -> None:
        self._handlers[effect_type].append(handler)

    def handlers_for(self, effect_type: type) -> list[EffectHandler]:
        return list(self._handlers.get(effect_type, []))

    async def dispatch(self, effect: Any) -> bool:
        """Run every handler for ``effect``. Returns True if all succeeded."""
        handlers = self._handlers.get(type(effect), [])
        if not handlers:
            logger.debug("No handlers for %s", type(effect).__name__)
            return True

        ok = True
        for handler in handlers:
            if not await self._run_with_retry(handler, effect):
                ok = False
        return ok

    async def dispatch_all(self, effects: list[Any]) -> None:
        """Dispatch effects in order, isolating failures per effect."""
        for effect in effects:
            try:
                await self.dispatch(effect)
            except Exception as e:
                logger.error(
                    "Unexpected error dispatching %s: %s",
                    type(effect).__name__, e,
                )

    async def _run_with_retry(self, handler: EffectHandler, effect: Any) -> bool:
        delays = self._config.retry_delays
        max_attempts = self._config.retry_max_attempts
        name = getattr(handler, "__name__", repr(handler))

        for attempt in range(max_attempts):
            try:
                await handler(effect)
                return True
            except Exception as e:
                logger.warning(
                    "Effect handler %s failed for %s (attempt %d): %s",
                    name, type(effect).__name__, attempt + 1, e,
                )

            if attempt < max_attempts - 1 and delays:
                delay = delays[attempt] if attempt < len(delays) else delays[-1]
                await asyncio.sleep(delay)

        logger.error(
            "All %d attempts exhausted for %s on handler %s",
            max_attempts, type(effect).__name__, name,
        )
        return False


def token_usage_recorder(store: EvaluationStore) -> EffectHandler:
    """Handler adding an evaluation's tokens to the owner's lifetime counter."""

    async def record_token_usage(effect: TokenUsageRecorded) -> None:
        await store.add_token_usage(effect.account_id, effect.usage.total_tokens)
        get_metrics().record_tokens(effect.usage.total_tokens)

    return record_token_usage


async def log_completion(effect: EvaluationCompleted) -> None:
    logger.info(
        "Evaluation of %s finished: status=%s score=%s (previous %s) version=%d%s",
        effect.project_id,
        effect.status,
        effect.final_score,
        effect.previous_score,
        effect.evaluation_version,
        f" fallback={effect.fallback_reason}" if effect.is_fallback else "",
    )


def default_dispatcher(
    store: EvaluationStore,
    config: EffectConfig | None = None,
) -> EffectDispatcher:
    """Dispatcher wired with token accounting and completion logging."""
    dispatcher = EffectDispatcher(config)
    dispatcher.register(TokenUsageRecorded, token_usage_recorder(store))
    dispatcher.register(EvaluationCompleted, log_completion)
    return dispatcher
