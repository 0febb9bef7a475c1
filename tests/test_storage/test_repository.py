"""Tests for PostgresEvaluationStore SQL and parameter passing."""

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from devscore.errors import (
    AccountNotFoundError,
    EvaluationInProgressError,
    ProjectNotFoundError,
)
from devscore.evaluation.schemas import EvaluationRecord, HistoryEntry, apply_evaluation
from devscore.storage.base import EvaluationClaim
from devscore.storage.repository import SCHEMA_SQL, PostgresEvaluationStore
from devscore.usage.policy import UsagePolicy

from tests.test_evaluation.conftest import make_record
from tests.test_storage.conftest import account_row, project_row

NOW = datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def repo(mock_database):
    """PostgresEvaluationStore with a mock database."""
    return PostgresEvaluationStore(mock_database)


@pytest.fixture
def claim(sample_project):
    return EvaluationClaim(
        project=sample_project,
        previous_status="created",
        claimed_at=NOW,
        token="tok_1",
    )


class TestSchema:
    async def test_create_tables(self, repo, mock_database):
        await repo.create_tables()
        mock_database.execute.assert_awaited_once_with(SCHEMA_SQL)

    def test_schema_constraints(self):
        assert "CREATE TABLE IF NOT EXISTS usage_accounts" in SCHEMA_SQL
        assert "CREATE TABLE IF NOT EXISTS projects" in SCHEMA_SQL
        assert "evaluation_history JSONB NOT NULL DEFAULT '[]'" in SCHEMA_SQL
        assert "CHECK (evaluations_limit >= -1)" in SCHEMA_SQL


class TestProjects:
    async def test_create_project_params(self, repo, mock_database, sample_project):
        mock_database.fetchrow.return_value = project_row()

        result = await repo.create_project(sample_project)

        assert result.project_id == sample_project.project_id
        args = mock_database.fetchrow.call_args
        sql = args[0][0]
        assert "INSERT INTO projects" in sql
        assert "RETURNING *" in sql
        assert args[0][1] == "project_abc123def456"
        assert args[0][2] == "acct_free"
        assert args[0][6] == ["Python", "FastAPI", "Redis"]
        assert args[0][9] is None
        assert args[0][11] == "[]"

    async def test_get_project_missing(self, repo, mock_database):
        mock_database.fetchrow.return_value = None
        assert await repo.get_project("project_missing") is None

    async def test_get_project_decodes_json(self, repo, mock_database):
        record = make_record()
        entry = HistoryEntry(
            version=1, final_score=6, evaluation=record, archived_at=NOW,
        )
        mock_database.fetchrow.return_value = project_row(
            status="evaluated",
            final_score=7,
            evaluation=json.dumps(record.to_document()),
            evaluation_version=2,
            evaluation_history=json.dumps([entry.to_dict()]),
        )

        project = await repo.get_project("project_abc123def456")

        assert project.evaluation == record
        assert project.evaluation_version == 2
        assert project.evaluation_history[0].final_score == 6
        assert project.evaluation_history[0].archived_at == NOW

    async def test_get_project_accepts_decoded_jsonb(self, repo, mock_database):
        record = make_record()
        mock_database.fetchrow.return_value = project_row(
            evaluation=record.to_document(),
            evaluation_history=[],
        )
        project = await repo.get_project("project_abc123def456")
        assert project.evaluation.sub_scores.architecture == 8

    async def test_list_projects_params(self, repo, mock_database):
        await repo.list_projects(limit=10, offset=20)

        args = mock_database.fetch.call_args
        assert "ORDER BY created_at ASC" in args[0][0]
        assert args[0][1] == 10
        assert args[0][2] == 20


class TestClaim:
    async def test_claims_idle_project(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = project_row()

        claim = await repo.claim_project("project_abc123def456", now=NOW)

        assert claim.previous_status == "created"
        assert claim.claimed_at == NOW
        assert "FOR UPDATE" in mock_conn.fetchrow.call_args[0][0]
        args = mock_conn.execute.call_args
        assert "status = 'evaluating'" in args[0][0]
        assert args[0][1] == "project_abc123def456"
        assert args[0][2] == claim.token
        assert args[0][3] == NOW

    async def test_missing_project(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = None
        with pytest.raises(ProjectNotFoundError):
            await repo.claim_project("project_missing", now=NOW)

    async def test_live_claim_conflicts(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = project_row(
            status="evaluating",
            claim_token="tok_other",
            claimed_at=NOW - timedelta(seconds=30),
        )

        with pytest.raises(EvaluationInProgressError):
            await repo.claim_project(
                "project_abc123def456", now=NOW, stale_after=timedelta(minutes=5),
            )
        mock_conn.execute.assert_not_called()

    async def test_stale_claim_reclaimed(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = project_row(
            status="evaluating",
            claim_token="tok_other",
            claimed_at=NOW - timedelta(minutes=10),
        )

        claim = await repo.claim_project(
            "project_abc123def456", now=NOW, stale_after=timedelta(minutes=5),
        )

        assert claim.previous_status == "created"
        mock_conn.execute.assert_awaited_once()

    async def test_release_requires_token(self, repo, mock_database, claim):
        mock_database.execute.return_value = "UPDATE 0"

        assert await repo.release_project(claim) is False
        args = mock_database.execute.call_args
        assert "claim_token = $2" in args[0][0]
        assert args[0][1:] == ("project_abc123def456", "tok_1", "created")

    async def test_release_success(self, repo, mock_database, claim):
        assert await repo.release_project(claim) is True


class TestCommit:
    async def test_commit_without_consume(self, repo, mock_conn, claim, sample_project):
        mock_conn.fetchval.return_value = "tok_1"
        updated = apply_evaluation(sample_project, make_record(), 7, "evaluated", now=NOW)

        decision = await repo.commit_evaluation(claim, updated)

        assert decision is None
        args = mock_conn.execute.call_args
        assert "claim_token = NULL" in args[0][0]
        assert args[0][2] == "evaluated"
        assert args[0][3] == 7
        assert json.loads(args[0][4])["sub_scores"]["architecture"] == 8

    async def test_lost_claim(self, repo, mock_conn, claim, sample_project):
        mock_conn.fetchval.return_value = "tok_other"

        with pytest.raises(EvaluationInProgressError):
            await repo.commit_evaluation(claim, sample_project)
        mock_conn.execute.assert_not_called()

    async def test_consume_writes_account_then_project(self, repo, mock_conn, claim, sample_project):
        mock_conn.fetchval.return_value = "tok_1"
        mock_conn.fetchrow.return_value = account_row(evaluations_used=1)
        policy = UsagePolicy(MagicMock())
        updated = apply_evaluation(sample_project, make_record(), 7, "evaluated", now=NOW)

        decision = await repo.commit_evaluation(claim, updated, policy.consumer(NOW))

        assert decision.allowed
        assert decision.evaluations_used == 2
        statements = [c[0][0] for c in mock_conn.execute.call_args_list]
        assert "UPDATE usage_accounts" in statements[0]
        assert "UPDATE projects" in statements[1]
        assert mock_conn.execute.call_args_list[0][0][3] == 2

    async def test_rejected_consume_writes_nothing(self, repo, mock_conn, claim, sample_project):
        mock_conn.fetchval.return_value = "tok_1"
        mock_conn.fetchrow.return_value = account_row(evaluations_used=3)
        policy = UsagePolicy(MagicMock())
        updated = apply_evaluation(sample_project, make_record(), 7, "evaluated", now=NOW)

        decision = await repo.commit_evaluation(claim, updated, policy.consumer(NOW))

        assert not decision.allowed
        assert decision.reason == "quota_exhausted"
        mock_conn.execute.assert_not_called()

    async def test_missing_account(self, repo, mock_conn, claim, sample_project):
        mock_conn.fetchval.return_value = "tok_1"
        mock_conn.fetchrow.return_value = None
        policy = UsagePolicy(MagicMock())

        with pytest.raises(AccountNotFoundError):
            await repo.commit_evaluation(claim, sample_project, policy.consumer(NOW))


class TestRewriteScores:
    def _evaluated_row(self, **overrides):
        record = make_record()
        return project_row(**{
            "status": "evaluated",
            "final_score": 7,
            "evaluation": json.dumps(record.to_document()),
            "evaluation_version": 2,
            **overrides,
        })

    async def test_missing_row(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = None
        with pytest.raises(ProjectNotFoundError):
            await repo.rewrite_scores("project_missing", lambda p: p)

    @pytest.mark.parametrize("overrides", [
        {"status": "evaluating"},
        {"claim_token": "tok_live", "claimed_at": NOW},
    ])
    async def test_claimed_row_refused(self, repo, mock_conn, overrides):
        mock_conn.fetchrow.return_value = self._evaluated_row(**overrides)
        rewrite = MagicMock(side_effect=lambda p: replace(p, final_score=5))

        with pytest.raises(EvaluationInProgressError):
            await repo.rewrite_scores("project_abc123def456", rewrite)

        rewrite.assert_not_called()
        mock_conn.execute.assert_not_called()

    async def test_locks_row_and_guards_version(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = self._evaluated_row()

        result = await repo.rewrite_scores(
            "project_abc123def456", lambda p: replace(p, final_score=5),
        )

        assert result.final_score == 5
        assert result.evaluation_version == 2
        assert "FOR UPDATE" in mock_conn.fetchrow.call_args[0][0]
        args = mock_conn.execute.call_args
        assert "evaluation_version = $5" in args[0][0]
        assert "claim_token IS NULL" in args[0][0]
        assert args[0][2] == 5
        assert args[0][5] == 2

    async def test_nothing_to_rewrite(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = self._evaluated_row()

        assert await repo.rewrite_scores("project_abc123def456", lambda p: None) is None
        mock_conn.execute.assert_not_called()

    async def test_lost_race_raises(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = self._evaluated_row()
        mock_conn.execute.return_value = "UPDATE 0"

        with pytest.raises(EvaluationInProgressError):
            await repo.rewrite_scores(
                "project_abc123def456", lambda p: replace(p, final_score=5),
            )


class TestAccounts:
    async def test_create_account_params(self, repo, mock_database, free_account):
        mock_database.fetchrow.return_value = account_row()

        result = await repo.create_account(free_account)

        assert result.account_id == "acct_free"
        args = mock_database.fetchrow.call_args
        assert "INSERT INTO usage_accounts" in args[0][0]
        assert args[0][1] == "acct_free"
        assert args[0][4] == 3

    async def test_get_account_missing(self, repo, mock_database):
        mock_database.fetchrow.return_value = None
        assert await repo.get_account("acct_missing") is None

    async def test_modify_account_locks_and_writes(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = account_row(plan_tier="pro", evaluations_limit=-1)

        def upgrade(account):
            updated = replace(account, plan_tier="team")
            return "done", updated

        result = await repo.modify_account("acct_free", upgrade)

        assert result == "done"
        assert "FOR UPDATE" in mock_conn.fetchrow.call_args[0][0]
        args = mock_conn.execute.call_args
        assert args[0][1] == "acct_free"
        assert args[0][2] == "team"

    async def test_modify_missing_account(self, repo, mock_conn):
        mock_conn.fetchrow.return_value = None
        with pytest.raises(AccountNotFoundError):
            await repo.modify_account("acct_missing", lambda a: (None, a))

    async def test_add_token_usage_increments_in_place(self, repo, mock_database):
        await repo.add_token_usage("acct_free", 150)

        args = mock_database.execute.call_args
        assert "ai_tokens_used = ai_tokens_used + $2" in args[0][0]
        assert args[0][1:] == ("acct_free", 150)

    async def test_add_token_usage_missing(self, repo, mock_database):
        mock_database.execute.return_value = "UPDATE 0"
        with pytest.raises(AccountNotFoundError):
            await repo.add_token_usage("acct_missing", 10)


def test_record_document_round_trip_matches_storage_format():
    record = EvaluationRecord.fallback("timeout", evaluated_at=NOW)
    stored = json.loads(json.dumps(record.to_document()))
    assert EvaluationRecord.from_document(stored) == record
