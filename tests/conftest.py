"""Shared test fixtures."""

from __future__ import annotations

import os
import tempfile
from datetime import date, datetime, timezone
from typing import Optional

# Keep test logs out of the source tree if a test attaches the file handler
os.environ.setdefault("STUDY_TRACKER_LOGS_DIR", tempfile.mkdtemp(prefix="study_tracker_logs_"))

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from errors import StoreError
from milestones import MilestoneEngine
from models import DailyRecommendation, MilestoneDefinition, NewRecommendation
from recommendations import AggregationRoutine, RecommendationManager

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
TODAY = date(2025, 3, 10)


class FakeMilestoneRepository:
    """In-memory stand-in for MilestoneRepository."""

    def __init__(self) -> None:
        self.rows: dict[str, MilestoneDefinition] = {}
        self.failing_keys: set[str] = set()
        self.fail_xp = False
        self.total_xp = 0

    async def insert_if_absent(self, milestone: MilestoneDefinition) -> bool:
        if milestone.key in self.rows:
            return False
        self.rows[milestone.key] = milestone.model_copy(
            update={"last_triggered": None, "times_triggered": 0}
        )
        return True

    async def list_all(self, errors: Optional[list] = None) -> list[MilestoneDefinition]:
        return list(self.rows.values())

    async def fire(
        self, key: str, now: datetime, cooldown_start: datetime
    ) -> Optional[MilestoneDefinition]:
        if key in self.failing_keys:
            raise StoreError(f"write failed for {key}")
        current = self.rows[key]
        if current.last_triggered is not None and current.last_triggered > cooldown_start:
            return None
        updated = current.model_copy(
            update={"last_triggered": now, "times_triggered": current.times_triggered + 1}
        )
        self.rows[key] = updated
        return updated

    async def add_bonus_xp(self, setting_key: str, amount: int) -> int:
        if self.fail_xp:
            raise StoreError("user_settings unavailable")
        self.total_xp += amount
        return self.total_xp


class FakeRecommendationRepository:
    """In-memory stand-in for RecommendationRepository."""

    def __init__(self) -> None:
        self.rows: list[dict] = []
        self.files: dict[int, dict] = {}
        self.topics: dict[int, dict] = {}
        self._next_id = 1

    def add_row(
        self,
        target_date: date,
        priority: int,
        created_at: datetime,
        file_id: Optional[int] = None,
        topic_id: Optional[int] = None,
        title: str = "Study",
    ) -> dict:
        row = {
            "id": self._next_id,
            "date": target_date,
            "file_id": file_id,
            "topic_id": topic_id,
            "title": title,
            "description": None,
            "recommendation_type": None,
            "estimated_minutes": None,
            "priority": priority,
            "is_completed": False,
            "created_at": created_at,
        }
        self._next_id += 1
        self.rows.append(row)
        return row

    def _enrich(self, row: dict) -> dict:
        file = self.files.get(row["file_id"]) if row["file_id"] is not None else None
        topic_id = row["topic_id"] if row["topic_id"] is not None else (file or {}).get("topic_id")
        topic = self.topics.get(topic_id) if topic_id is not None else None
        return {
            **row,
            "file_name": file["original_name"] if file else None,
            "topic_name": topic["name"] if topic else None,
            "topic_icon": topic["icon"] if topic else None,
        }

    async def list_for_date(self, target_date: date) -> list[DailyRecommendation]:
        rows = [r for r in self.rows if r["date"] == target_date]
        rows.sort(key=lambda r: (-r["priority"], r["created_at"], r["id"]))
        return [DailyRecommendation.model_validate(self._enrich(r)) for r in rows]

    async def mark_completed(self, recommendation_id: int) -> Optional[DailyRecommendation]:
        for row in self.rows:
            if row["id"] == recommendation_id:
                row["is_completed"] = True
                return DailyRecommendation.model_validate(row)
        return None

    async def count_for_date(self, target_date: date) -> dict:
        rows = [r for r in self.rows if r["date"] == target_date]
        return {"total": len(rows), "completed": sum(1 for r in rows if r["is_completed"])}

    async def most_recent_file(self) -> Optional[dict]:
        if not self.files:
            return None
        return max(self.files.values(), key=lambda f: f["id"])

    async def insert(self, target_date: date, rec: NewRecommendation) -> None:
        row = self.add_row(
            target_date, rec.priority, NOW, file_id=rec.file_id,
            topic_id=rec.topic_id, title=rec.title,
        )
        row["recommendation_type"] = rec.recommendation_type.value
        row["estimated_minutes"] = rec.estimated_minutes
        row["description"] = rec.description


class StubAggregator(AggregationRoutine):
    """Inserts two rows per date, once."""

    def __init__(self, repository: FakeRecommendationRepository) -> None:
        self.repository = repository
        self.calls: list[date] = []

    async def generate(self, target_date: date) -> None:
        self.calls.append(target_date)
        if any(r["date"] == target_date for r in self.repository.rows):
            return
        self.repository.add_row(target_date, 9, NOW, title="Focus")
        self.repository.add_row(target_date, 3, NOW, title="Light")


class FailingAggregator(AggregationRoutine):
    async def generate(self, target_date: date) -> None:
        raise RuntimeError("function generate_daily_recommendations(date) does not exist")


@pytest.fixture
def milestone_repo() -> FakeMilestoneRepository:
    return FakeMilestoneRepository()


@pytest.fixture
def engine(milestone_repo: FakeMilestoneRepository) -> MilestoneEngine:
    return MilestoneEngine(milestone_repo)


@pytest.fixture
def recommendation_repo() -> FakeRecommendationRepository:
    return FakeRecommendationRepository()


@pytest.fixture
def manager(recommendation_repo: FakeRecommendationRepository) -> RecommendationManager:
    return RecommendationManager(recommendation_repo, StubAggregator(recommendation_repo))


@pytest_asyncio.fixture
async def client(engine: MilestoneEngine, manager: RecommendationManager):
    """HTTP client against the app with fake-backed services (no lifespan)."""
    from main import app

    app.state.db = None
    app.state.milestone_engine = engine
    app.state.recommendation_manager = manager

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
