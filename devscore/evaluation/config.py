"""Configuration for the AI evaluator and the evaluation pipeline.

``EvaluatorConfig`` covers the LLM endpoint, model and failure handling
(``EVALUATOR_*`` env vars). ``EvaluationConfig`` covers history retention and
claim expiry (``EVALUATION_*`` env vars).
"""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from devscore.evaluation.schemas import DEFAULT_HISTORY_LIMIT


class EvaluatorConfig(BaseSettings):
    """Settings for the OpenAI-compatible evaluation endpoint.

    Example:
        EVALUATOR_API_KEY=gsk_...
        EVALUATOR_BASE_URL=https://api.groq.com/openai/v1
        EVALUATOR_SIMULATE_FAILURE=true
    """

    model_config = SettingsConfigDict(
        env_prefix="EVALUATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: SecretStr | None = Field(
        default=None,
        description="API key for the chat completions endpoint",
    )
    base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="OpenAI-compatible API base URL",
    )
    model: str = Field(
        default="llama-3.3-70b-versatile",
        description="Chat model used for evaluations",
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
    )
    timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=120.0,
        description="Hard deadline in seconds for one evaluation call",
    )
    prompt_version: str = Field(
        default="v3",
        description="Identifier of the prompt template, stored in provenance",
    )
    simulate_failure: bool = Field(
        default=False,
        description="Skip the API and always return the fallback record",
    )

    circuit_failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before opening circuit",
    )
    circuit_recovery_timeout: float = Field(
        default=60.0,
        ge=1.0,
        description="Seconds before attempting recovery trial",
    )

    @property
    def is_configured(self) -> bool:
        """Whether an API key is available."""
        return self.api_key is not None and bool(self.api_key.get_secret_value())


class EvaluationConfig(BaseSettings):
    """Settings for re-evaluation history and in-flight claims."""

    model_config = SettingsConfigDict(
        env_prefix="EVALUATION_",
        case_sensitive=False,
        extra="ignore",
    )

    history_limit: int = Field(
        default=DEFAULT_HISTORY_LIMIT,
        ge=1,
        le=100,
        description="Archived evaluations kept per project (most recent first)",
    )
    claim_timeout_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Age after which an 'evaluating' claim is considered abandoned",
    )
