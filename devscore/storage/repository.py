"""PostgreSQL evaluation store.

Every read-modify-write runs in one transaction with ``SELECT ... FOR UPDATE``
on the affected rows. Lock order is always project before account, which
keeps concurrent claims, commits and usage checks deadlock-free.
"""

import json
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

import asyncpg

from devscore.errors import (
    AccountNotFoundError,
    EvaluationInProgressError,
    ProjectNotFoundError,
)
from devscore.evaluation.schemas import (
    EvaluationRecord,
    HistoryEntry,
    Project,
    settled_status,
)
from devscore.storage.base import (
    AccountMutation,
    EvaluationClaim,
    EvaluationStore,
    ScoreRewrite,
    T,
)
from devscore.storage.database import Database
from devscore.usage.schemas import UsageAccount, UsageDecision

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS usage_accounts (
    account_id TEXT PRIMARY KEY,
    plan_tier TEXT NOT NULL DEFAULT 'free'
        CHECK (plan_tier IN ('free', 'pro', 'team')),
    evaluations_used INTEGER NOT NULL DEFAULT 0
        CHECK (evaluations_used >= 0),
    evaluations_limit INTEGER NOT NULL DEFAULT 3
        CHECK (evaluations_limit >= -1),
    usage_period_start TIMESTAMPTZ NOT NULL,
    billing_status TEXT NOT NULL DEFAULT 'none'
        CHECK (billing_status IN ('none', 'active', 'past_due', 'canceled', 'trialing')),
    grace_period_end TIMESTAMPTZ,
    ai_tokens_used BIGINT NOT NULL DEFAULT 0,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS projects (
    project_id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL REFERENCES usage_accounts(account_id),
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    repo_url TEXT NOT NULL,
    tech_stack TEXT[] NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'created'
        CHECK (status IN ('created', 'evaluating', 'evaluated', 'failed')),
    final_score INTEGER,
    evaluation JSONB,
    evaluation_version INTEGER NOT NULL DEFAULT 1
        CHECK (evaluation_version >= 1),
    evaluation_history JSONB NOT NULL DEFAULT '[]',
    claim_token TEXT,
    claimed_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_projects_owner
    ON projects(owner_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_projects_status_score
    ON projects(status, final_score DESC);
CREATE INDEX IF NOT EXISTS idx_projects_created_at
    ON projects(created_at DESC);
"""


class PostgresEvaluationStore(EvaluationStore):
    """``EvaluationStore`` backed by the ``projects`` and ``usage_accounts`` tables."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the schema if it does not exist. Safe to re-run."""
        await self._db.execute(SCHEMA_SQL)
        logger.info("Evaluation schema ready")

    # -- Projects ---------------------------------------------------------

    async def create_project(self, project: Project) -> Project:
        sql = """
            INSERT INTO projects (
                project_id, owner_id, title, description, repo_url,
                tech_stack, status, final_score, evaluation,
                evaluation_version, evaluation_history, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            project.project_id,
            project.owner_id,
            project.title,
            project.description,
            project.repo_url,
            project.tech_stack,
            project.status,
            project.final_score,
            _dump_evaluation(project.evaluation),
            project.evaluation_version,
            _dump_history(project.evaluation_history),
            project.created_at,
            project.updated_at,
        )
        return _row_to_project(row)

    async def get_project(self, project_id: str) -> Project | None:
        row = await self._db.fetchrow(
            "SELECT * FROM projects WHERE project_id = $1", project_id,
        )
        if row is None:
            return None
        return _row_to_project(row)

    async def list_projects(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Project]:
        sql = """
            SELECT * FROM projects
            ORDER BY created_at ASC
            LIMIT $1 OFFSET $2
        """
        rows = await self._db.fetch(sql, limit, offset)
        return [_row_to_project(row) for row in rows]

    async def claim_project(
        self,
        project_id: str,
        *,
        now: datetime,
        stale_after: timedelta | None = None,
    ) -> EvaluationClaim:
        async with self._db.transaction() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM projects WHERE project_id = $1 FOR UPDATE",
                project_id,
            )
            if row is None:
                raise ProjectNotFoundError(project_id)

            project = _row_to_project(row)
            if project.is_evaluating:
                claimed_at = row.get("claimed_at") or row["updated_at"]
                if stale_after is None or now - claimed_at < stale_after:
                    raise EvaluationInProgressError(project_id)
                logger.warning(
                    "Reclaiming stale evaluation on project %s (claimed at %s)",
                    project_id,
                    claimed_at.isoformat(),
                )

            claim = EvaluationClaim(
                project=project,
                previous_status=settled_status(project),
                claimed_at=now,
            )
            await conn.execute(
                """
                UPDATE projects
                SET status = 'evaluating', claim_token = $2,
                    claimed_at = $3, updated_at = $3
                WHERE project_id = $1
                """,
                project_id,
                claim.token,
                now,
            )
            return claim

    async def release_project(self, claim: EvaluationClaim) -> bool:
        sql = """
            UPDATE projects
            SET status = $3, claim_token = NULL, claimed_at = NULL,
                updated_at = NOW()
            WHERE project_id = $1 AND claim_token = $2
        """
        result = await self._db.execute(
            sql, claim.project_id, claim.token, claim.previous_status,
        )
        return result == "UPDATE 1"

    async def commit_evaluation(
        self,
        claim: EvaluationClaim,
        project: Project,
        consume: AccountMutation[UsageDecision] | None = None,
    ) -> UsageDecision | None:
        async with self._db.transaction() as conn:
            held = await conn.fetchval(
                "SELECT claim_token FROM projects WHERE project_id = $1 FOR UPDATE",
                claim.project_id,
            )
            if held != claim.token:
                raise EvaluationInProgressError(claim.project_id)

            decision: UsageDecision | None = None
            if consume is not None:
                account = await _lock_account(conn, project.owner_id)
                decision, updated = consume(account)
                if not decision.allowed:
                    # Nothing written yet; leaving the block releases the locks
                    return decision
                await _write_account(conn, updated)

            await conn.execute(
                """
                UPDATE projects
                SET status = $2, final_score = $3, evaluation = $4,
                    evaluation_version = $5, evaluation_history = $6,
                    claim_token = NULL, claimed_at = NULL, updated_at = $7
                WHERE project_id = $1
                """,
                project.project_id,
                project.status,
                project.final_score,
                _dump_evaluation(project.evaluation),
                project.evaluation_version,
                _dump_history(project.evaluation_history),
                project.updated_at,
            )
            return decision

    async def rewrite_scores(
        self,
        project_id: str,
        rewrite: ScoreRewrite,
    ) -> Project | None:
        async with self._db.transaction() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM projects WHERE project_id = $1 FOR UPDATE",
                project_id,
            )
            if row is None:
                raise ProjectNotFoundError(project_id)
            if row["status"] == "evaluating" or row.get("claim_token") is not None:
                raise EvaluationInProgressError(project_id)

            stored = _row_to_project(row)
            rewritten = rewrite(stored)
            if rewritten is None:
                return None

            result = await conn.execute(
                """
                UPDATE projects
                SET final_score = $2, evaluation = $3, evaluation_history = $4,
                    updated_at = NOW()
                WHERE project_id = $1
                  AND evaluation_version = $5
                  AND claim_token IS NULL
                """,
                project_id,
                rewritten.final_score,
                _dump_evaluation(rewritten.evaluation),
                _dump_history(rewritten.evaluation_history),
                stored.evaluation_version,
            )
            if result != "UPDATE 1":
                raise EvaluationInProgressError(project_id)
            return replace(
                stored,
                final_score=rewritten.final_score,
                evaluation=rewritten.evaluation,
                evaluation_history=rewritten.evaluation_history,
            )

    # -- Usage accounts ---------------------------------------------------

    async def create_account(self, account: UsageAccount) -> UsageAccount:
        sql = """
            INSERT INTO usage_accounts (
                account_id, plan_tier, evaluations_used, evaluations_limit,
                usage_period_start, billing_status, grace_period_end,
                ai_tokens_used, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            account.account_id,
            account.plan_tier,
            account.evaluations_used,
            account.evaluations_limit,
            account.usage_period_start,
            account.billing_status,
            account.grace_period_end,
            account.ai_tokens_used,
            account.updated_at,
        )
        return _row_to_account(row)

    async def get_account(self, account_id: str) -> UsageAccount | None:
        row = await self._db.fetchrow(
            "SELECT * FROM usage_accounts WHERE account_id = $1", account_id,
        )
        if row is None:
            return None
        return _row_to_account(row)

    async def modify_account(
        self,
        account_id: str,
        mutate: AccountMutation[T],
    ) -> T:
        async with self._db.transaction() as conn:
            account = await _lock_account(conn, account_id)
            result, updated = mutate(account)
            await _write_account(conn, updated)
            return result

    async def add_token_usage(self, account_id: str, tokens: int) -> None:
        sql = """
            UPDATE usage_accounts
            SET ai_tokens_used = ai_tokens_used + $2
            WHERE account_id = $1
        """
        result = await self._db.execute(sql, account_id, tokens)
        if result != "UPDATE 1":
            raise AccountNotFoundError(account_id)

    async def health_check(self) -> bool:
        return await self._db.health_check()

    async def close(self) -> None:
        await self._db.close()


async def _lock_account(conn: asyncpg.Connection, account_id: str) -> UsageAccount:
    row = await conn.fetchrow(
        "SELECT * FROM usage_accounts WHERE account_id = $1 FOR UPDATE",
        account_id,
    )
    if row is None:
        raise AccountNotFoundError(account_id)
    return _row_to_account(row)


async def _write_account(conn: asyncpg.Connection, account: UsageAccount) -> None:
    # ai_tokens_used is only ever incremented in place by add_token_usage
    await conn.execute(
        """
        UPDATE usage_accounts
        SET plan_tier = $2, evaluations_used = $3, evaluations_limit = $4,
            usage_period_start = $5, billing_status = $6,
            grace_period_end = $7, updated_at = NOW()
        WHERE account_id = $1
        """,
        account.account_id,
        account.plan_tier,
        account.evaluations_used,
        account.evaluations_limit,
        account.usage_period_start,
        account.billing_status,
        account.grace_period_end,
    )


def _dump_evaluation(record: EvaluationRecord | None) -> str | None:
    if record is None:
        return None
    return json.dumps(record.to_document())


def _dump_history(history: list[HistoryEntry]) -> str:
    return json.dumps([entry.to_dict() for entry in history])


def _load_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_project(row: Any) -> Project:
    """Convert an asyncpg Record to a Project."""
    evaluation = _load_json(row.get("evaluation"), None)
    history = _load_json(row.get("evaluation_history"), [])
    return Project(
        project_id=row["project_id"],
        owner_id=row["owner_id"],
        title=row["title"],
        description=row["description"],
        repo_url=row["repo_url"],
        tech_stack=list(row.get("tech_stack") or []),
        status=row["status"],
        final_score=row.get("final_score"),
        evaluation=(
            EvaluationRecord.from_document(evaluation) if evaluation else None
        ),
        evaluation_version=row.get("evaluation_version") or 1,
        evaluation_history=[HistoryEntry.from_dict(h) for h in history],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_account(row: Any) -> UsageAccount:
    """Convert an asyncpg Record to a UsageAccount."""
    return UsageAccount(
        account_id=row["account_id"],
        plan_tier=row["plan_tier"],
        evaluations_used=row["evaluations_used"],
        evaluations_limit=row["evaluations_limit"],
        usage_period_start=row["usage_period_start"],
        billing_status=row["billing_status"],
        grace_period_end=row.get("grace_period_end"),
        ai_tokens_used=row.get("ai_tokens_used") or 0,
        updated_at=row["updated_at"],
    )
