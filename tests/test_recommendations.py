"""Daily recommendation lifecycle tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from errors import CollaboratorError, NotFound, ValidationError
from recommendations import (
    AggregationRoutine, RecommendationManager, ReadingProgressAggregator,
    StoredProcedureAggregator,
)

from conftest import NOW, TODAY, FailingAggregator, StubAggregator


def at(hour: int) -> datetime:
    return datetime(2025, 3, 10, hour, 0, tzinfo=timezone.utc)


class TestListForToday:
    @pytest.mark.asyncio
    async def test_priority_desc_then_earliest_created(self, manager, recommendation_repo):
        late = recommendation_repo.add_row(TODAY, 5, at(10), title="late")
        early = recommendation_repo.add_row(TODAY, 5, at(9), title="early")
        urgent = recommendation_repo.add_row(TODAY, 9, at(11), title="urgent")

        result = await manager.list_for_today(today=TODAY)

        assert [r.id for r in result.recommendations] == [urgent["id"], early["id"], late["id"]]
        assert result.date == TODAY

    @pytest.mark.asyncio
    async def test_only_rows_for_the_day(self, manager, recommendation_repo):
        recommendation_repo.add_row(TODAY - timedelta(days=1), 10, at(8))
        today_row = recommendation_repo.add_row(TODAY, 1, at(8))

        result = await manager.list_for_today(today=TODAY)

        assert [r.id for r in result.recommendations] == [today_row["id"]]

    @pytest.mark.asyncio
    async def test_enrichment_uses_left_join(self, manager, recommendation_repo):
        recommendation_repo.topics[1] = {"id": 1, "name": "Calculus", "icon": "sigma"}
        recommendation_repo.files[7] = {"id": 7, "original_name": "limits.pdf", "topic_id": 1}
        recommendation_repo.add_row(TODAY, 5, at(8), file_id=7)
        recommendation_repo.add_row(TODAY, 4, at(8), file_id=99)
        recommendation_repo.add_row(TODAY, 3, at(8))

        with_file, dangling, bare = (await manager.list_for_today(today=TODAY)).recommendations

        assert (with_file.file_name, with_file.topic_name, with_file.topic_icon) == (
            "limits.pdf", "Calculus", "sigma"
        )
        assert (dangling.file_name, dangling.topic_name) == (None, None)
        assert (bare.file_name, bare.topic_name, bare.topic_icon) == (None, None, None)

    @pytest.mark.asyncio
    async def test_empty_day(self, manager):
        result = await manager.list_for_today(today=TODAY)
        assert result.recommendations == []


class TestComplete:
    @pytest.mark.asyncio
    async def test_unknown_id_is_not_found(self, manager):
        with pytest.raises(NotFound):
            await manager.complete(12345)

    @pytest.mark.asyncio
    async def test_complete_twice_is_idempotent(self, manager, recommendation_repo):
        row = recommendation_repo.add_row(TODAY, 5, at(9))

        first = await manager.complete(row["id"])
        second = await manager.complete(row["id"])

        assert first.is_completed is True
        assert second.is_completed is True
        assert second.id == row["id"]

    @pytest.mark.asyncio
    async def test_summary_counts(self, manager, recommendation_repo):
        row = recommendation_repo.add_row(TODAY, 5, at(9))
        recommendation_repo.add_row(TODAY, 3, at(9))
        await manager.complete(row["id"])

        summary = await manager.summary_for_today(today=TODAY)

        assert (summary.total, summary.completed, summary.pending) == (2, 1, 1)


class TestGenerate:
    @pytest.mark.asyncio
    async def test_generate_twice_does_not_double(self, manager, recommendation_repo):
        await manager.generate_for_date(TODAY)
        await manager.generate_for_date(TODAY)
        assert len(recommendation_repo.rows) == 2

    @pytest.mark.asyncio
    async def test_defaults_to_reference_today(self, recommendation_repo):
        stub = StubAggregator(recommendation_repo)
        manager = RecommendationManager(recommendation_repo, stub)

        result = await manager.generate_for_date(today=TODAY)

        assert result.success is True
        assert result.date == TODAY
        assert stub.calls == [TODAY]

    @pytest.mark.asyncio
    async def test_accepts_iso_string(self, recommendation_repo):
        stub = StubAggregator(recommendation_repo)
        manager = RecommendationManager(recommendation_repo, stub)

        result = await manager.generate_for_date("2025-04-01")

        assert result.date == date(2025, 4, 1)
        assert stub.calls == [date(2025, 4, 1)]

    @pytest.mark.asyncio
    async def test_malformed_date_rejected_before_routine(self, recommendation_repo):
        stub = StubAggregator(recommendation_repo)
        manager = RecommendationManager(recommendation_repo, stub)

        with pytest.raises(ValidationError):
            await manager.generate_for_date("04/01/2025")
        assert stub.calls == []

    @pytest.mark.asyncio
    async def test_routine_failure_is_collaborator_error(self, recommendation_repo):
        manager = RecommendationManager(recommendation_repo, FailingAggregator())

        with pytest.raises(CollaboratorError) as exc_info:
            await manager.generate_for_date(TODAY)
        assert isinstance(exc_info.value.cause, RuntimeError)


class TestAggregators:
    @pytest.mark.asyncio
    async def test_stored_procedure_called_with_date(self):
        db = AsyncMock()
        aggregator = StoredProcedureAggregator(db, "generate_daily_recommendations")

        await aggregator.generate(TODAY)

        db.execute.assert_awaited_once_with(
            "SELECT generate_daily_recommendations($1::date)", TODAY
        )

    @pytest.mark.asyncio
    async def test_reading_progress_builds_from_recent_file(self, recommendation_repo):
        recommendation_repo.files[3] = {"id": 3, "original_name": "ch1.pdf", "topic_id": None}
        aggregator = ReadingProgressAggregator(recommendation_repo)

        await aggregator.generate(TODAY)

        titles = [r.title for r in await recommendation_repo.list_for_date(TODAY)]
        assert titles == ["Daily Goal Check", "Continue Reading", "Quick Review"]

    @pytest.mark.asyncio
    async def test_reading_progress_without_files(self, recommendation_repo):
        aggregator = ReadingProgressAggregator(recommendation_repo)
        await aggregator.generate(TODAY)
        assert [r["title"] for r in recommendation_repo.rows] == ["Daily Goal Check"]

    @pytest.mark.asyncio
    async def test_reading_progress_is_idempotent(self, recommendation_repo):
        recommendation_repo.files[3] = {"id": 3, "original_name": "ch1.pdf", "topic_id": None}
        aggregator = ReadingProgressAggregator(recommendation_repo)

        await aggregator.generate(TODAY)
        await aggregator.generate(TODAY)

        assert len(recommendation_repo.rows) == 3


def test_now_and_today_agree():
    assert NOW.date() == TODAY


def test_aggregation_routine_requires_generate():
    class Incomplete(AggregationRoutine):
        pass

    with pytest.raises(TypeError):
        Incomplete()
