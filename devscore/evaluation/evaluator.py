"""AI evaluator client.

Calls an OpenAI-compatible chat completions endpoint (Groq by default) in
JSON mode and turns the reply into an ``EvaluationRecord``.

``AIEvaluator.evaluate`` never raises. Every failure mode becomes a
fallback record with ``provenance.fallback_reason`` set:

- ``simulated``: ``EVALUATOR_SIMULATE_FAILURE`` is on
- ``not_configured``: no API key
- ``circuit_open``: recent calls kept failing; the provider is skipped
- ``timeout``: no reply within ``EVALUATOR_TIMEOUT`` (the request is cancelled)
- ``error``: transport or API error
- ``invalid_response``: empty content, non-JSON, or not a JSON object

SDK imports are deferred to first use so the package imports without the
provider configured.
"""

import asyncio
import json
import logging
import numbers
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from devscore.evaluation.circuit_breaker import CircuitBreaker, CircuitOpenError
from devscore.evaluation.config import EvaluatorConfig
from devscore.evaluation.prompts import build_system_prompt, build_user_prompt
from devscore.evaluation.schemas import (
    CompanyFit,
    EvaluationRecord,
    Provenance,
    SubScores,
    TokenUsage,
)
from devscore.observability.metrics import get_metrics
from devscore.scoring.config import ScoringConfig

logger = logging.getLogger(__name__)

# Reply key -> SubScores field. The "...Score" spellings are accepted from
# older prompt versions.
_SUB_SCORE_KEYS: dict[str, tuple[str, ...]] = {
    "architecture": ("architecture", "architectureScore"),
    "scalability": ("scalability", "scalabilityScore"),
    "code_quality": ("codeQuality", "codeQualityScore"),
    "innovation": ("innovation", "innovationScore"),
    "real_world_impact": ("realWorldImpact", "realWorldImpactScore"),
    "complexity": ("complexity",),
}


class InvalidResponseError(ValueError):
    """The provider replied, but not with a usable evaluation object."""


class AIEvaluator:
    """Produces evaluation records from an LLM.

    Args:
        config: Endpoint, model and failure settings.
        scoring_config: Score scale advertised in the prompt and recorded in
            provenance.
        client: Pre-built ``AsyncOpenAI``-compatible client (tests).
        breaker: Circuit breaker; one is built from ``config`` if omitted.
    """

    def __init__(
        self,
        config: EvaluatorConfig | None = None,
        scoring_config: ScoringConfig | None = None,
        client: Any = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._config = config or EvaluatorConfig()
        self._scoring = scoring_config or ScoringConfig()
        self._client = client
        self._breaker = breaker or CircuitBreaker(
            failure_threshold=self._config.circuit_failure_threshold,
            recovery_timeout=self._config.circuit_recovery_timeout,
            name="evaluator",
        )
        self._system_prompt = build_system_prompt(
            self._scoring.score_min, self._scoring.score_max,
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def model(self) -> str:
        return self._config.model

    def _get_client(self) -> Any:
        """Lazy-initialize the OpenAI async client."""
        if self._client is None:
            import openai

            api_key = self._config.api_key
            self._client = openai.AsyncOpenAI(
                api_key=api_key.get_secret_value() if api_key else None,
                base_url=self._config.base_url,
                max_retries=0,
            )
        return self._client

    async def evaluate(
        self,
        title: str,
        description: str,
        tech_stack: list[str],
        repo_url: str,
    ) -> EvaluationRecord:
        """Evaluate one project. Always returns a well-formed record."""
        if self._config.simulate_failure:
            logger.warning("Evaluator failure simulation enabled; returning fallback")
            return self._fallback("simulated")

        if self._client is None and not self._config.is_configured:
            logger.warning("No evaluator API key configured; returning fallback")
            return self._fallback("not_configured")

        try:
            self._breaker.before_call()
        except CircuitOpenError:
            logger.warning("Evaluator circuit open; skipping AI call")
            return self._fallback("circuit_open")

        user_prompt = build_user_prompt(title, description, tech_stack, repo_url)
        try:
            async with asyncio.timeout(self._config.timeout):
                response = await self._get_client().chat.completions.create(
                    model=self._config.model,
                    temperature=self._config.temperature,
                    response_format={"type": "json_object"},
                    messages=[
                        {"role": "system", "content": self._system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                )
            record = self._parse_response(response)
        except asyncio.CancelledError:
            self._breaker.record_cancelled()
            raise
        except TimeoutError:
            self._breaker.record_failure()
            logger.error("Evaluator timed out after %.1fs", self._config.timeout)
            return self._fallback("timeout")
        except InvalidResponseError as e:
            self._breaker.record_failure()
            logger.error("Evaluator returned an unusable response: %s", e)
            return self._fallback("invalid_response")
        except Exception as e:
            self._breaker.record_failure()
            logger.error("Evaluator call failed: %s: %s", type(e).__name__, e)
            return self._fallback("error")

        self._breaker.record_success()
        return record

    def _parse_response(self, response: Any) -> EvaluationRecord:
        """Build a record from a chat completion.

        Sub-scores are copied as found; non-numeric values become None so
        the aggregator rejects them. Only structural problems raise.

        Raises:
            InvalidResponseError: Empty content, invalid JSON, or not an object.
        """
        try:
            raw = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise InvalidResponseError("no message content") from e
        if not raw:
            raise InvalidResponseError("empty content")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidResponseError(f"not JSON ({e.msg})") from e
        if not isinstance(data, dict):
            raise InvalidResponseError(f"expected object, got {type(data).__name__}")

        fit = data.get("companyFit")
        fit = fit if isinstance(fit, dict) else {}

        try:
            return EvaluationRecord(
                sub_scores=SubScores(**{
                    field: _number_or_none(_first(data, keys))
                    for field, keys in _SUB_SCORE_KEYS.items()
                }),
                company_fit=CompanyFit(**{
                    target: _number_or_none(fit.get(target)) or 0
                    for target in ("google", "startup", "mnc")
                }),
                confidence=data.get("confidence"),
                tags=_strings(data.get("tags", data.get("skillTags"))),
                strengths=_strings(data.get("strengths")),
                weaknesses=_strings(data.get("weaknesses")),
                improvements=_strings(data.get("improvements")),
                resume_bullets=_strings(data.get("resumeBullets")),
                learning_path=_strings(
                    data.get("learningPath", data.get("nextLearningPath"))
                ),
                token_usage=_token_usage(getattr(response, "usage", None)),
                provenance=Provenance(
                    model_version=getattr(response, "model", None) or self._config.model,
                    prompt_version=self._config.prompt_version,
                    score_version=self._scoring.score_version,
                    evaluated_at=datetime.now(timezone.utc),
                ),
            )
        except ValidationError as e:
            raise InvalidResponseError(str(e)) from e

    def _fallback(self, reason: str) -> EvaluationRecord:
        get_metrics().record_fallback(reason)
        return EvaluationRecord.fallback(
            reason,
            model_version=self._config.model,
            prompt_version=self._config.prompt_version,
            score_version=self._scoring.score_version,
        )


def _first(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _number_or_none(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    return float(value)


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _token_usage(usage: Any) -> TokenUsage:
    if usage is None:
        return TokenUsage()
    return TokenUsage(
        prompt_tokens=getattr(usage, "prompt_tokens", None) or 0,
        completion_tokens=getattr(usage, "completion_tokens", None) or 0,
        total_tokens=getattr(usage, "total_tokens", None) or 0,
    )
