"""Tests for evaluation data models and history archival."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from devscore.evaluation.schemas import (
    FALLBACK_IMPROVEMENT,
    EvaluationOutcome,
    EvaluationRecord,
    HistoryEntry,
    Project,
    SubScores,
    apply_evaluation,
    archive_evaluation,
    settled_status,
)

from tests.test_evaluation.conftest import make_record


class TestSubScores:
    def test_camel_case_aliases(self) -> None:
        scores = SubScores.model_validate({"codeQuality": 7, "realWorldImpact": 4})
        assert scores.code_quality == 7
        assert scores.real_world_impact == 4

    def test_as_mapping_uses_dimension_names(self) -> None:
        mapping = SubScores(code_quality=7).as_mapping()
        assert set(mapping) == {
            "architecture",
            "scalability",
            "codeQuality",
            "innovation",
            "realWorldImpact",
            "complexity",
        }
        assert mapping["codeQuality"] == 7

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_stored_as_none(self, value) -> None:
        assert SubScores(architecture=value).architecture is None

    def test_out_of_range_accepted_at_parse_time(self) -> None:
        assert SubScores(architecture=-1).architecture == -1


class TestEvaluationRecord:
    @pytest.mark.parametrize(
        "raw,expected",
        [(85, 85), (150, 100), (-10, 0), (72.6, 73), ("90", 90), ("high", None), (None, None)],
    )
    def test_confidence_clamped(self, raw, expected) -> None:
        assert EvaluationRecord(confidence=raw).confidence == expected

    def test_fallback_shape(self) -> None:
        record = EvaluationRecord.fallback("timeout", model_version="m", prompt_version="p")
        assert record.is_fallback
        assert record.provenance.fallback_reason == "timeout"
        assert all(v == 0 for v in record.sub_scores.as_mapping().values())
        assert record.company_fit.google == 0
        assert record.improvements == [FALLBACK_IMPROVEMENT]
        assert record.token_usage.total_tokens == 0

    def test_document_round_trip(self) -> None:
        record = make_record()
        document = record.to_document()
        assert document["sub_scores"]["codeQuality"] == 8
        assert isinstance(document["provenance"]["evaluated_at"], str)
        assert EvaluationRecord.from_document(document) == record


class TestProject:
    def test_defaults(self) -> None:
        project = Project(owner_id="a", title="t", description="d", repo_url="u")
        assert project.project_id.startswith("project_")
        assert project.status == "created"
        assert project.final_score is None
        assert project.evaluation_version == 1
        assert project.evaluation_history == []

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Invalid status"):
            Project(owner_id="a", title="t", description="d", repo_url="u", status="done")

    def test_invalid_version(self) -> None:
        with pytest.raises(ValueError, match="evaluation_version"):
            Project(owner_id="a", title="t", description="d", repo_url="u", evaluation_version=0)

    @pytest.mark.parametrize("status,expected", [
        ("created", True),
        ("evaluated", True),
        ("failed", True),
        ("evaluating", False),
    ])
    def test_can_start_evaluation(self, status, expected) -> None:
        project = Project(owner_id="a", title="t", description="d", repo_url="u", status=status)
        assert project.can_start_evaluation is expected


class TestSettledStatus:
    def test_non_evaluating_unchanged(self, sample_project) -> None:
        assert settled_status(sample_project) == "created"

    def test_evaluating_without_evaluation(self, sample_project) -> None:
        sample_project.status = "evaluating"
        assert settled_status(sample_project) == "created"

    def test_evaluating_with_scored_evaluation(self, sample_project) -> None:
        sample_project.status = "evaluating"
        sample_project.evaluation = make_record()
        sample_project.final_score = 7
        assert settled_status(sample_project) == "evaluated"

    def test_evaluating_with_zero_score(self, sample_project) -> None:
        sample_project.status = "evaluating"
        sample_project.evaluation = EvaluationRecord.fallback("error")
        sample_project.final_score = 0
        assert settled_status(sample_project) == "failed"


class TestArchiveEvaluation:
    def test_no_current_evaluation_is_noop(self, sample_project, now) -> None:
        result = archive_evaluation(sample_project, now=now)
        assert result.evaluation_history == []
        assert result.evaluation_version == 1

    def test_archives_and_bumps_version(self, sample_project, now) -> None:
        record = make_record()
        sample_project.evaluation = record
        sample_project.final_score = 7

        result = archive_evaluation(sample_project, now=now)

        assert result.evaluation_version == 2
        assert len(result.evaluation_history) == 1
        entry = result.evaluation_history[0]
        assert entry.version == 1
        assert entry.final_score == 7
        assert entry.evaluation == record
        assert entry.archived_at == now

    def test_input_not_mutated(self, sample_project, now) -> None:
        sample_project.evaluation = make_record()
        archive_evaluation(sample_project, now=now)
        assert sample_project.evaluation_history == []
        assert sample_project.evaluation_version == 1

    def test_history_cap_drops_oldest(self, sample_project, now) -> None:
        project = sample_project
        for i in range(11):
            project = apply_evaluation(
                project,
                make_record(architecture=i % 10),
                final_score=i % 10,
                status="evaluated",
                now=now + timedelta(minutes=i),
            )
        # 11 evaluations archived 10 times; archiving one more exceeds the cap
        assert len(project.evaluation_history) == 10
        project = apply_evaluation(
            project, make_record(), final_score=7, status="evaluated", now=now,
        )

        history = project.evaluation_history
        assert len(history) == 10
        assert [e.version for e in history] == list(range(11, 1, -1))
        assert project.evaluation_version == 12

    def test_custom_limit(self, sample_project, now) -> None:
        project = sample_project
        for _ in range(5):
            project = apply_evaluation(
                project, make_record(), 7, "evaluated", now=now, history_limit=3,
            )
        assert len(project.evaluation_history) == 3
        assert project.evaluation_history[0].version == 4


class TestApplyEvaluation:
    def test_first_evaluation(self, sample_project, now) -> None:
        record = make_record()
        result = apply_evaluation(sample_project, record, 7, "evaluated", now=now)
        assert result.evaluation == record
        assert result.final_score == 7
        assert result.status == "evaluated"
        assert result.evaluation_version == 1
        assert result.evaluation_history == []
        assert result.updated_at == now

    def test_re_evaluation_archives_previous(self, sample_project, now) -> None:
        first = apply_evaluation(sample_project, make_record(), 7, "evaluated", now=now)
        second = apply_evaluation(
            first, EvaluationRecord.fallback("timeout"), 0, "failed", now=now,
        )
        assert second.evaluation_version == 2
        assert second.evaluation_history[0].version == 1
        assert second.evaluation_history[0].final_score == 7
        assert second.status == "failed"


class TestHistoryEntry:
    def test_from_dict_parses_iso_timestamp(self) -> None:
        archived_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        entry = HistoryEntry(
            version=3,
            final_score=6,
            evaluation=make_record(),
            archived_at=archived_at,
        )
        restored = HistoryEntry.from_dict(entry.to_dict())
        assert restored.archived_at == archived_at
        assert restored.version == 3
        assert restored.evaluation.sub_scores.code_quality == 8


class TestEvaluationOutcome:
    def test_score_delta(self, sample_project) -> None:
        outcome = EvaluationOutcome(
            evaluation=make_record(),
            final_score=7,
            status="evaluated",
            project=sample_project,
            previous_score=4,
        )
        assert outcome.score_delta == 3
        assert not outcome.is_fallback

    def test_delta_without_previous(self, sample_project) -> None:
        outcome = EvaluationOutcome(
            evaluation=make_record(),
            final_score=5,
            status="evaluated",
            project=sample_project,
        )
        assert outcome.score_delta == 5
