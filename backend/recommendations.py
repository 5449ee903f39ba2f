"""
Study Tracker - Daily Recommendations
Generate, list and complete the study suggestions for a day
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional, List, Union

from database import Database
from errors import NotFound, CollaboratorError
from logger import get_logger
from models import (
    DailyRecommendation, NewRecommendation, RecommendationType,
    TodayRecommendationsResponse, GenerateRecommendationsResponse,
    RecommendationSummary, parse_target_date
)

log = get_logger("recommendations")


# ============================================
# PERSISTENCE
# ============================================

class RecommendationRepository:
    """daily_recommendations queries."""

    def __init__(self, db: Database):
        self.db = db

    async def list_for_date(self, target_date: date) -> List[DailyRecommendation]:
        """Rows for a date with file/topic display data, most urgent first."""
        rows = await self.db.fetch("""
            SELECT
                dr.*,
                f.original_name as file_name,
                t.name as topic_name,
                t.icon as topic_icon
            FROM daily_recommendations dr
            LEFT JOIN files f ON dr.file_id = f.id
            LEFT JOIN topics t ON t.id = COALESCE(dr.topic_id, f.topic_id)
            WHERE dr.date = $1
            ORDER BY dr.priority DESC, dr.created_at ASC, dr.id ASC
        """, target_date)
        return [DailyRecommendation.model_validate(row) for row in rows]

    async def mark_completed(self, recommendation_id: int) -> Optional[DailyRecommendation]:
        row = await self.db.execute_returning(
            "UPDATE daily_recommendations SET is_completed = true WHERE id = $1 RETURNING *",
            recommendation_id
        )
        return DailyRecommendation.model_validate(row) if row else None

    async def count_for_date(self, target_date: date) -> dict:
        row = await self.db.fetch_one("""
            SELECT
                COUNT(*) as total,
                COUNT(CASE WHEN is_completed THEN 1 END) as completed
            FROM daily_recommendations
            WHERE date = $1
        """, target_date)
        return {"total": row["total"], "completed": row["completed"]}

    async def most_recent_file(self) -> Optional[dict]:
        """The file read most recently, falling back to any file."""
        return await self.db.fetch_one("""
            SELECT f.id, f.original_name, f.topic_id, rp.current_page, rp.last_read
            FROM files f
            LEFT JOIN reading_progress rp ON f.id = rp.file_id
            ORDER BY rp.last_read DESC NULLS LAST, f.id DESC
            LIMIT 1
        """)

    async def insert(self, target_date: date, rec: NewRecommendation) -> None:
        await self.db.execute("""
            INSERT INTO daily_recommendations
            (date, title, description, recommendation_type, file_id, topic_id,
             estimated_minutes, priority)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        """, target_date, rec.title, rec.description, rec.recommendation_type.value,
            rec.file_id, rec.topic_id, rec.estimated_minutes, rec.priority)


# ============================================
# AGGREGATION ROUTINES
# ============================================

class AggregationRoutine(ABC):
    """Produces the recommendation rows for a date.

    Implementations must be idempotent per date: running twice for the same
    date must not duplicate rows.
    """

    @abstractmethod
    async def generate(self, target_date: date) -> None:
        ...


class StoredProcedureAggregator(AggregationRoutine):
    """Delegates to a database function taking the target date."""

    def __init__(self, db: Database, procedure_name: str = "generate_daily_recommendations"):
        self.db = db
        self.procedure_name = procedure_name

    async def generate(self, target_date: date) -> None:
        # procedure_name is validated as an identifier by RecommendationConfig
        await self.db.execute(f"SELECT {self.procedure_name}($1::date)", target_date)


class ReadingProgressAggregator(AggregationRoutine):
    """Builds suggestions from reading progress when no rows exist for the date."""

    def __init__(self, repository: RecommendationRepository):
        self.repository = repository

    def build(self, recent_file: Optional[dict]) -> List[NewRecommendation]:
        recommendations = []

        if recent_file:
            recommendations.append(NewRecommendation(
                title="Continue Reading",
                description=f'Pick up where you left off in "{recent_file["original_name"]}"',
                recommendation_type=RecommendationType.FOCUS,
                priority=8,
                estimated_minutes=25,
                file_id=recent_file["id"],
                topic_id=recent_file.get("topic_id"),
            ))
            recommendations.append(NewRecommendation(
                title="Quick Review",
                description="Review the last 3 pages you read",
                recommendation_type=RecommendationType.LIGHT,
                priority=5,
                estimated_minutes=10,
                file_id=recent_file["id"],
                topic_id=recent_file.get("topic_id"),
            ))

        recommendations.append(NewRecommendation(
            title="Daily Goal Check",
            description="Work towards your daily study goal",
            recommendation_type=RecommendationType.URGENT,
            priority=10,
            estimated_minutes=30,
        ))
        return recommendations

    async def generate(self, target_date: date) -> None:
        counts = await self.repository.count_for_date(target_date)
        if counts["total"] > 0:
            log.debug("Recommendations already exist for %s", target_date)
            return

        recent_file = await self.repository.most_recent_file()
        for rec in self.build(recent_file):
            await self.repository.insert(target_date, rec)


# ============================================
# LIFECYCLE MANAGER
# ============================================

class RecommendationManager:
    """Generate, read and complete daily recommendations."""

    def __init__(self, repository: RecommendationRepository, aggregator: AggregationRoutine):
        self.repository = repository
        self.aggregator = aggregator

    async def generate_for_date(
        self,
        target_date: Union[date, str, None] = None,
        today: Optional[date] = None
    ) -> GenerateRecommendationsResponse:
        """
        Ask the aggregation routine to produce rows for a date.

        Args:
            target_date: date or YYYY-MM-DD string, defaults to today
            today: reference date used when target_date is omitted

        Raises:
            ValidationError: malformed date (nothing is sent to the store)
            CollaboratorError: the aggregation routine failed
        """
        resolved = parse_target_date(target_date, today or date.today())
        try:
            await self.aggregator.generate(resolved)
        except CollaboratorError:
            raise
        except Exception as e:
            log.error("Recommendation generation failed for %s: %s", resolved, e)
            raise CollaboratorError(f"Recommendation generation failed: {e}", cause=e) from e

        log.info("Recommendations generated for %s", resolved)
        return GenerateRecommendationsResponse(success=True, date=resolved)

    async def list_for_today(self, today: Optional[date] = None) -> TodayRecommendationsResponse:
        today = today or date.today()
        recommendations = await self.repository.list_for_date(today)
        return TodayRecommendationsResponse(recommendations=recommendations, date=today)

    async def complete(self, recommendation_id: int) -> DailyRecommendation:
        """Mark a recommendation completed. Completing twice is harmless."""
        updated = await self.repository.mark_completed(recommendation_id)
        if updated is None:
            raise NotFound("Recommendation not found")
        log.info("Recommendation %d completed", recommendation_id)
        return updated

    async def summary_for_today(self, today: Optional[date] = None) -> RecommendationSummary:
        today = today or date.today()
        counts = await self.repository.count_for_date(today)
        return RecommendationSummary(
            date=today,
            total=counts["total"],
            completed=counts["completed"],
            pending=counts["total"] - counts["completed"],
        )
