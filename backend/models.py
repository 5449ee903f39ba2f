"""
Study Tracker - Pydantic Models (v2 syntax)
"""

import math
from datetime import datetime, date
from enum import Enum
from typing import Optional, List, Dict, Any, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from errors import ValidationError


# ============================================
# ENUMS
# ============================================

class MetricName(str, Enum):
    TOTAL_HOURS = "total_hours"
    TOTAL_PAGES = "total_pages"
    STREAK_DAYS = "streak_days"


class RecommendationType(str, Enum):
    URGENT = "urgent"
    FOCUS = "focus"
    LIGHT = "light"


# ============================================
# MILESTONE MODELS
# ============================================

class MilestoneDefinition(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str = Field(min_length=1, max_length=100)
    title: str
    description: str = ""
    celebration_message: str = ""
    icon: str = ""
    trigger_condition: Dict[MetricName, float] = Field(default_factory=dict)
    xp_bonus: int = Field(default=0, ge=0)
    last_triggered: Optional[datetime] = None
    times_triggered: int = Field(default=0, ge=0)

    @field_validator("trigger_condition")
    @classmethod
    def thresholds_are_finite(cls, value: Dict[MetricName, float]) -> Dict[MetricName, float]:
        for metric, threshold in value.items():
            if not math.isfinite(threshold) or threshold < 0:
                raise ValueError(f"threshold for {metric.value} must be a non-negative number")
        return value

    @classmethod
    def from_row(cls, row: dict) -> "MilestoneDefinition":
        """Build from a study_milestones row."""
        return cls(
            key=row["milestone_key"],
            title=row["title"],
            description=row.get("description") or "",
            celebration_message=row.get("celebration_message") or "",
            icon=row.get("icon") or "",
            trigger_condition=row.get("trigger_condition") or {},
            xp_bonus=row.get("xp_bonus") or 0,
            last_triggered=row.get("last_triggered"),
            times_triggered=row.get("times_triggered") or 0,
        )

    def condition_payload(self) -> Dict[str, float]:
        """Trigger condition keyed by plain metric names, for JSONB storage."""
        return {metric.value: threshold for metric, threshold in self.trigger_condition.items()}


class ProgressSnapshot(BaseModel):
    """Aggregate progress supplied by the progress-tracking subsystem."""

    model_config = ConfigDict(extra="ignore")

    total_hours: float = Field(default=0, ge=0, allow_inf_nan=False)
    total_pages: float = Field(default=0, ge=0, allow_inf_nan=False)
    current_streak: float = Field(default=0, ge=0, allow_inf_nan=False)

    def metric(self, name: MetricName) -> float:
        if name is MetricName.STREAK_DAYS:
            return self.current_streak
        return getattr(self, name.value)


# ============================================
# RECOMMENDATION MODELS
# ============================================

class DailyRecommendation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    file_id: Optional[int] = None
    topic_id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    recommendation_type: Optional[str] = None
    estimated_minutes: Optional[int] = None
    priority: int = 0
    is_completed: bool = False
    created_at: datetime
    # Left-join enrichment, None when the reference is missing
    file_name: Optional[str] = None
    topic_name: Optional[str] = None
    topic_icon: Optional[str] = None


class NewRecommendation(BaseModel):
    """A row an aggregation routine is about to insert."""

    title: str
    description: str
    recommendation_type: RecommendationType
    priority: int
    estimated_minutes: Optional[int] = None
    file_id: Optional[int] = None
    topic_id: Optional[int] = None


# ============================================
# API MODELS
# ============================================

class MilestoneCheckRequest(BaseModel):
    # Shape is checked by parse_snapshot so every malformed body is a 400
    progress_data: Any = None


class MilestoneCheckResponse(BaseModel):
    triggered_milestones: List[MilestoneDefinition]
    total_bonus_xp: int = 0
    errors: List[str] = Field(default_factory=list)


class MilestoneInitResponse(BaseModel):
    success: bool = True
    definitions_seeded: int = 0


class MilestoneListResponse(BaseModel):
    milestones: List[MilestoneDefinition]


class GenerateRecommendationsResponse(BaseModel):
    success: bool = True
    date: date


class TodayRecommendationsResponse(BaseModel):
    recommendations: List[DailyRecommendation]
    date: date


class CompleteRecommendationResponse(BaseModel):
    success: bool = True
    recommendation: DailyRecommendation


class RecommendationSummary(BaseModel):
    date: date
    total: int
    completed: int
    pending: int


class HealthStatus(BaseModel):
    status: str = "healthy"
    version: str = "1.0.0"
    database: str = "connected"


# ============================================
# INPUT VALIDATION
# ============================================

def parse_snapshot(data: Any) -> ProgressSnapshot:
    """Validate caller-supplied progress data, raising ValidationError."""
    if isinstance(data, ProgressSnapshot):
        return data
    if not isinstance(data, dict):
        raise ValidationError("progress_data must be an object")
    for name, value in data.items():
        if name not in ProgressSnapshot.model_fields:
            continue
        # bool is an int subclass; True is not a page count
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"progress_data.{name} must be a number")
    try:
        return ProgressSnapshot.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid progress_data: {e.errors()[0]['msg']}") from e


def parse_target_date(value: Union[date, str, None], default: date) -> date:
    """Accept a date or an ISO YYYY-MM-DD string; None means default."""
    if value is None:
        return default
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as e:
            raise ValidationError("Invalid date format. Use YYYY-MM-DD") from e
    raise ValidationError("Invalid date format. Use YYYY-MM-DD")
