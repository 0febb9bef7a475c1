"""Pytest fixtures for evaluation tests."""

import json
from datetime import datetime
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from devscore.evaluation.config import EvaluationConfig, EvaluatorConfig
from devscore.evaluation.effects import EffectConfig, default_dispatcher
from devscore.evaluation.orchestrator import EvaluationOrchestrator
from devscore.evaluation.schemas import (
    CompanyFit,
    EvaluationRecord,
    Provenance,
    SubScores,
    TokenUsage,
)
from devscore.scoring import ScoreAggregator
from devscore.usage.config import UsageConfig
from devscore.usage.policy import UsagePolicy


def make_record(
    architecture: float | None = 8,
    scalability: float | None = 6,
    code_quality: float | None = 8,
    innovation: float | None = 5,
    real_world_impact: float | None = 7,
    total_tokens: int = 150,
) -> EvaluationRecord:
    """An AI record; the defaults aggregate to a final score of 7."""
    return EvaluationRecord(
        sub_scores=SubScores(
            architecture=architecture,
            scalability=scalability,
            code_quality=code_quality,
            innovation=innovation,
            real_world_impact=real_world_impact,
            complexity=6,
        ),
        company_fit=CompanyFit(google=5, startup=8, mnc=6),
        confidence=80,
        strengths=["Clear module boundaries"],
        token_usage=TokenUsage(
            prompt_tokens=total_tokens - 50 if total_tokens else 0,
            completion_tokens=50 if total_tokens else 0,
            total_tokens=total_tokens,
        ),
        provenance=Provenance(model_version="llama-3.3-70b-versatile", prompt_version="v3"),
    )


def make_completion(
    payload: Any,
    total_tokens: int = 150,
    model: str = "llama-3.3-70b-versatile",
) -> SimpleNamespace:
    """A chat completion shaped like the OpenAI SDK response."""
    content = payload if isinstance(payload, str) or payload is None else json.dumps(payload)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(
            prompt_tokens=total_tokens - 50,
            completion_tokens=50,
            total_tokens=total_tokens,
        ),
        model=model,
    )


@pytest.fixture
def ai_payload() -> dict[str, Any]:
    """A well-formed AI reply on the 0-9 scale."""
    return {
        "architecture": 8,
        "scalability": 6,
        "codeQuality": 8,
        "innovation": 5,
        "realWorldImpact": 7,
        "complexity": 6,
        "confidence": 85,
        "tags": ["websockets", "redis"],
        "strengths": ["Clean separation of transport and domain"],
        "weaknesses": ["No load tests"],
        "improvements": ["Add backpressure handling"],
        "resumeBullets": ["Built a realtime chat backend using FastAPI and Redis"],
        "learningPath": ["Learn k6 to load-test websocket fan-out"],
        "companyFit": {"google": 5, "startup": 8, "mnc": 6},
    }


@pytest.fixture
def evaluator_config() -> EvaluatorConfig:
    return EvaluatorConfig(
        api_key="test-key",
        timeout=1.0,
        circuit_failure_threshold=2,
        circuit_recovery_timeout=5.0,
        simulate_failure=False,
    )


@pytest.fixture
def mock_client() -> MagicMock:
    """OpenAI-compatible client whose create() is an AsyncMock."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


@pytest.fixture
def mock_evaluator() -> AsyncMock:
    """Evaluator returning a score-7 record by default."""
    evaluator = AsyncMock()
    evaluator.evaluate.return_value = make_record()
    return evaluator


@pytest.fixture
def clock(now: datetime):
    return lambda: now


@pytest.fixture
def policy(store, clock) -> UsagePolicy:
    return UsagePolicy(store, UsageConfig(), clock=clock)


@pytest.fixture
def dispatcher(store):
    return default_dispatcher(store, EffectConfig(retry_max_attempts=1, retry_delays=[]))


@pytest.fixture
def orchestrator(store, mock_evaluator, policy, dispatcher, clock) -> EvaluationOrchestrator:
    return EvaluationOrchestrator(
        store=store,
        evaluator=mock_evaluator,
        aggregator=ScoreAggregator(),
        policy=policy,
        dispatcher=dispatcher,
        config=EvaluationConfig(history_limit=10, claim_timeout_seconds=300),
        clock=clock,
    )


@pytest.fixture
async def seeded(store, free_account, sample_project):
    """Store holding ``free_account`` and ``sample_project``."""
    await store.create_account(free_account)
    await store.create_project(sample_project)
    return store
