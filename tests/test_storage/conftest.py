"""Pytest fixtures for storage tests."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def mock_conn():
    """Connection handed out inside ``Database.transaction()``."""
    conn = AsyncMock()
    conn.fetchrow = AsyncMock()
    conn.fetchval = AsyncMock()
    conn.execute = AsyncMock(return_value="UPDATE 1")
    return conn


@pytest.fixture
def mock_database(mock_conn):
    """Mock Database with async fetch methods and a transaction context."""
    db = AsyncMock()
    db.fetchrow = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock()
    db.execute = AsyncMock(return_value="UPDATE 1")

    @asynccontextmanager
    async def transaction():
        yield mock_conn

    db.transaction = MagicMock(side_effect=transaction)
    return db


def project_row(**overrides: Any) -> dict[str, Any]:
    """A ``projects`` row as asyncpg would return it."""
    created = datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
    row = {
        "project_id": "project_abc123def456",
        "owner_id": "acct_free",
        "title": "Realtime Chat Service",
        "description": "WebSocket chat backend with Redis pub/sub fan-out.",
        "repo_url": "https://github.com/example/realtime-chat",
        "tech_stack": ["Python", "FastAPI", "Redis"],
        "status": "created",
        "final_score": None,
        "evaluation": None,
        "evaluation_version": 1,
        "evaluation_history": "[]",
        "claim_token": None,
        "claimed_at": None,
        "created_at": created,
        "updated_at": created,
    }
    row.update(overrides)
    return row


def account_row(**overrides: Any) -> dict[str, Any]:
    """A ``usage_accounts`` row as asyncpg would return it."""
    row = {
        "account_id": "acct_free",
        "plan_tier": "free",
        "evaluations_used": 0,
        "evaluations_limit": 3,
        "usage_period_start": datetime(2026, 3, 1, tzinfo=timezone.utc),
        "billing_status": "none",
        "grace_period_end": None,
        "ai_tokens_used": 0,
        "updated_at": datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row
